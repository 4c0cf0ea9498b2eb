import pytest
import yaml

from bridgescore.config_resolver import ConfigResolver, InMemoryTenantConfigSource, YamlTenantConfigSource
from bridgescore.errors import ConfigurationError
from bridgescore.schemas import ScoringMethod, TenantScoringConfig


class TestConfigResolver:
    def setup_method(self):
        self.source = InMemoryTenantConfigSource()
        self.resolver = ConfigResolver(self.source)

    def _add(self, **fields):
        self.source.add(TenantScoringConfig(tenant_id="org-1", **fields))

    def test_remote_when_fully_configured(self):
        self._add(assistant_id="asst_1", api_key="sk-1", enabled=True)

        route = self.resolver.resolve("org-1")

        assert route.method == ScoringMethod.REMOTE
        assert route.is_remote
        assert route.credentials.assistant_id == "asst_1"
        assert route.credentials.api_key.get_secret_value() == "sk-1"
        assert len(route.bridge_steps) == 6

    @pytest.mark.parametrize("fields, missing", [
        ({"api_key": "sk-1", "enabled": True}, "assistant id"),
        ({"assistant_id": "  ", "api_key": "sk-1", "enabled": True}, "assistant id"),
        ({"assistant_id": "asst_1", "enabled": True}, "API key"),
        ({"assistant_id": "asst_1", "api_key": "", "enabled": True}, "API key"),
        ({"assistant_id": "asst_1", "api_key": "sk-1"}, "enabled"),
        ({"assistant_id": "asst_1", "api_key": "sk-1", "enabled": False}, "enabled"),
    ])
    def test_local_when_anything_missing(self, fields, missing):
        self._add(**fields)

        route = self.resolver.resolve("org-1")

        assert route.method == ScoringMethod.LOCAL
        assert not route.is_remote
        assert route.credentials is None
        assert missing in route.reason

    def test_unknown_tenant_raises(self):
        with pytest.raises(ConfigurationError):
            self.resolver.resolve("org-missing")

    def test_api_key_not_in_repr(self):
        self._add(assistant_id="asst_1", api_key="sk-very-secret", enabled=True)

        route = self.resolver.resolve("org-1")

        assert "sk-very-secret" not in repr(route)


class TestYamlTenantConfigSource:
    def _write(self, tmp_path, data):
        path = tmp_path / "tenants.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    def test_loads_tenant_with_camel_case_fields(self, tmp_path):
        path = self._write(tmp_path, {"tenants": {
            "org-1": {
                "assistantId": "asst_1",
                "apiKey": "sk-1",
                "enabled": True,
                "bridgeSteps": [
                    {"key": "qualify", "name": "Qualify", "weight": 4, "order": 1, "customPrompt": "Check BANT"},
                ],
            },
        }})

        config = YamlTenantConfigSource(path).get_config("org-1")

        assert config.tenant_id == "org-1"
        assert config.enabled
        assert config.bridge_steps[0].weight == 4
        assert config.bridge_steps[0].custom_prompt == "Check BANT"

    def test_missing_bridge_steps_uses_canonical_rubric(self, tmp_path):
        path = self._write(tmp_path, {"tenants": {"org-1": {"enabled": False}}})

        config = YamlTenantConfigSource(path).get_config("org-1")

        assert [s.key for s in config.bridge_steps][0] == "pinpoint_pain"
        assert len(config.bridge_steps) == 6

    def test_resolver_on_yaml_source(self, tmp_path):
        path = self._write(tmp_path, {"tenants": {
            "org-1": {"assistantId": "asst_1", "apiKey": "sk-1", "enabled": True},
        }})

        route = ConfigResolver(YamlTenantConfigSource(path)).resolve("org-1")

        assert route.is_remote

    def test_unknown_tenant(self, tmp_path):
        path = self._write(tmp_path, {"tenants": {"org-1": {}}})

        with pytest.raises(ConfigurationError):
            YamlTenantConfigSource(path).get_config("org-2")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            YamlTenantConfigSource(tmp_path / "nope.yaml").get_config("org-1")

    def test_no_tenants_mapping(self, tmp_path):
        path = self._write(tmp_path, ["org-1"])

        with pytest.raises(ConfigurationError):
            YamlTenantConfigSource(path).get_config("org-1")

    def test_invalid_tenant_config(self, tmp_path):
        path = self._write(tmp_path, {"tenants": {"org-1": {
            "bridgeSteps": [{"key": "qa", "name": "Q&A", "weight": 0, "order": 1}],
        }}})

        with pytest.raises(ConfigurationError):
            YamlTenantConfigSource(path).get_config("org-1")

    def test_duplicate_step_keys_rejected(self, tmp_path):
        path = self._write(tmp_path, {"tenants": {"org-1": {
            "bridgeSteps": [
                {"key": "qa", "name": "Q&A", "weight": 3, "order": 1},
                {"key": "qa", "name": "Q&A again", "weight": 3, "order": 2},
            ],
        }}})

        with pytest.raises(ConfigurationError):
            YamlTenantConfigSource(path).get_config("org-1")
