from meterwise.cli import parse_args
from meterwise.config import DEFAULT_AUTHORITY, Config


class TestConfigFromEnv:
    def test_defaults(self, monkeypatch: "object") -> "None":
        for name in (
            "METERWISE_AUTHORITY",
            "METERWISE_PARTNER_CENTER_TENANT_ID",
            "METERWISE_REDIS_URL",
        ):
            monkeypatch.delenv(name, raising=False)
        config = Config.from_env()
        assert config.authority == DEFAULT_AUTHORITY
        assert config.partner_center_tenant_id == ""
        assert config.redis_url == ""

    def test_reads_env_vars(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("METERWISE_PARTNER_CENTER_TENANT_ID", "tenant-1")
        monkeypatch.setenv("METERWISE_KEYVAULT_URL", "https://v.example.net")
        config = Config.from_env()
        assert config.partner_center_tenant_id == "tenant-1"
        assert config.keyvault_enabled is True


class TestDerived:
    def test_partner_center_authority(self) -> "None":
        config = Config(authority="https://login.example.com/", partner_center_tenant_id="t1")
        assert config.partner_center_authority == "https://login.example.com/t1"

    def test_keyvault_authority_falls_back_to_partner_tenant(self) -> "None":
        config = Config(authority="https://login.example.com", partner_center_tenant_id="t1")
        assert config.keyvault_authority == "https://login.example.com/t1"

    def test_missing_without_vault_requires_redis(self) -> "None":
        config = Config(
            partner_center_application_id="app",
            partner_center_tenant_id="t1",
            encryption_key="k",
        )
        assert config.missing() == ["METERWISE_REDIS_URL"]

    def test_missing_with_vault_requires_vault_credentials(self) -> "None":
        config = Config(
            partner_center_application_id="app",
            partner_center_tenant_id="t1",
            encryption_key="k",
            keyvault_url="https://v.example.net",
            keyvault_application_id="kv-app",
        )
        assert config.missing() == ["METERWISE_KEYVAULT_APPLICATION_SECRET"]


class TestParseArgs:
    def test_flags_override_defaults(self) -> "None":
        config = parse_args(
            [
                "--report.interval", "60",
                "--report.months", "1",
                "--once",
                "--log.level", "debug",
                "--log.format", "json",
            ]
        )
        assert config.report_interval == 60
        assert config.report_months == 1
        assert config.once is True
        assert config.log_level == "debug"
        assert config.log_format == "json"
