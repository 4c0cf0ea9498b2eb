import pytest

from bridgescore.config_resolver import ConfigResolver, InMemoryTenantConfigSource
from bridgescore.schemas import TenantScoringConfig

from tests.helpers import LOCAL_TENANT, REMOTE_TENANT, make_poller


@pytest.fixture
def fast_poller():
    return make_poller()


@pytest.fixture
def tenant_source():
    return InMemoryTenantConfigSource({
        REMOTE_TENANT: TenantScoringConfig(
            tenant_id=REMOTE_TENANT, assistant_id="asst_123", api_key="sk-test", enabled=True
        ),
        LOCAL_TENANT: TenantScoringConfig(tenant_id=LOCAL_TENANT),
    })


@pytest.fixture
def resolver(tenant_source):
    return ConfigResolver(tenant_source)
