import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .errors import ConfigurationError
from .schemas import RemoteCredentials, ScoringMethod, ScoringRoute, TenantScoringConfig

logger = logging.getLogger(__name__)


class TenantConfigSource(ABC):
    """Read-only lookup of per-tenant scoring configuration"""

    @abstractmethod
    def get_config(self, tenant_id: str) -> TenantScoringConfig:
        """Return the tenant's config or raise ConfigurationError if unknown"""


class InMemoryTenantConfigSource(TenantConfigSource):
    def __init__(self, configs: Optional[Dict[str, TenantScoringConfig]] = None):
        self.configs = dict(configs or {})

    def add(self, config: TenantScoringConfig) -> None:
        self.configs[config.tenant_id] = config

    def get_config(self, tenant_id: str) -> TenantScoringConfig:
        try:
            return self.configs[tenant_id]
        except KeyError:
            raise ConfigurationError(f"No scoring configuration for tenant '{tenant_id}'") from None


class YamlTenantConfigSource(TenantConfigSource):
    """
    Tenant configs from a YAML file:

        tenants:
          org-123:
            assistantId: asst_abc
            apiKey: sk-...
            enabled: true
            bridgeSteps: [...]   # optional, canonical rubric when omitted

    The file is read on every lookup so edits apply without a restart.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise ConfigurationError(f"Tenant config file not found: {self.path}")
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid tenant config file {self.path}: {e}") from e

        tenants = data.get('tenants') if isinstance(data, dict) else None
        if not isinstance(tenants, dict):
            raise ConfigurationError(f"Tenant config file {self.path} has no 'tenants' mapping")
        return tenants

    def get_config(self, tenant_id: str) -> TenantScoringConfig:
        raw = self._load().get(tenant_id)
        if raw is None:
            raise ConfigurationError(f"No scoring configuration for tenant '{tenant_id}'")
        try:
            return TenantScoringConfig(tenant_id=tenant_id, **raw)
        except (TypeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid configuration for tenant '{tenant_id}': {e}") from e


class ConfigResolver:
    """Decides whether a tenant can be scored by its remote assistant.

    The remote route requires an assistant id, an API key and the tenant's
    explicit opt-in. Anything less resolves to the local route; only a
    missing tenant record is reported as ConfigurationError.
    """

    def __init__(self, source: TenantConfigSource):
        self.source = source

    def resolve(self, tenant_id: str) -> ScoringRoute:
        config = self.source.get_config(tenant_id)

        missing = []
        if not (config.assistant_id and config.assistant_id.strip()):
            missing.append("assistant id")
        if config.api_key is None or not config.api_key.get_secret_value().strip():
            missing.append("API key")
        if not config.enabled:
            missing.append("remote scoring enabled flag")

        if missing:
            reason = f"local only: missing {', '.join(missing)}"
            logger.info(f"Tenant {tenant_id} resolved to {reason}")
            return ScoringRoute(
                method=ScoringMethod.LOCAL,
                bridge_steps=config.bridge_steps,
                reason=reason,
            )

        logger.info(f"Tenant {tenant_id} resolved to remote assistant {config.assistant_id}")
        return ScoringRoute(
            method=ScoringMethod.REMOTE,
            bridge_steps=config.bridge_steps,
            credentials=RemoteCredentials(
                assistant_id=config.assistant_id.strip(),
                api_key=config.api_key,
            ),
            reason="remote assistant configured",
        )
