import pytest
from prometheus_client import CollectorRegistry

from meterwise.config import Config
from meterwise.context import AppContext
from meterwise.metrics import Metrics
from meterwise.store.environment import EnvironmentSecretStore
from meterwise.store.keyvault import KeyVaultSecretStore


def _config(**overrides: "object") -> "Config":
    values = {
        "authority": "https://login.example.com",
        "partner_center_application_id": "pc-app",
        "partner_center_tenant_id": "partner-tenant",
        "partner_center_endpoint": "https://billing.example.com",
        "redis_url": "redis://localhost:6379",
        "encryption_key": "unit-test passphrase",
    }
    values.update(overrides)
    return Config(**values)


class TestAppContext:
    @pytest.mark.asyncio
    async def test_environment_secrets_without_vault(
        self, registry: "CollectorRegistry"
    ) -> "None":
        context = AppContext.build(_config(), Metrics(registry=registry))

        assert isinstance(context.secrets, EnvironmentSecretStore)
        assert context.user_credentials is not context.partner_credentials
        assert (
            context.partner_credentials.authority
            == "https://login.example.com/partner-tenant"
        )
        await context.close()

    @pytest.mark.asyncio
    async def test_vault_secrets_when_configured(
        self, registry: "CollectorRegistry"
    ) -> "None":
        config = _config(
            keyvault_url="https://vault.example.net",
            keyvault_application_id="kv-app",
            keyvault_application_secret="kv-secret",
        )

        context = AppContext.build(config, Metrics(registry=registry))

        assert isinstance(context.secrets, KeyVaultSecretStore)
        await context.close()
