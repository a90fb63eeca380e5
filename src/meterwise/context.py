from dataclasses import dataclass

import structlog

from meterwise.auth.cache import CredentialCache
from meterwise.auth.identity import AadIdentityProvider
from meterwise.billing.operations import PartnerOperations
from meterwise.config import Config
from meterwise.metrics import Metrics
from meterwise.serialization import Protector
from meterwise.store.base import SecretStore
from meterwise.store.environment import EnvironmentSecretStore
from meterwise.store.keyvault import KeyVaultSecretStore
from meterwise.store.redis import REDIS_CONNECTION_SECRET, RedisCache

logger = structlog.get_logger()

APPLICATION_SECRET = "ApplicationSecret"
PARTNER_CENTER_APPLICATION_SECRET = "PartnerCenterApplicationSecret"


@dataclass
class AppContext:
    """
    AppContext holds the process-wide handles: the secret store, the
    distributed cache, the credential caches and the partner
    operations built on top of them. It is created once at start-up
    and passed to whatever needs it.
    """

    config: "Config"
    metrics: "Metrics"
    secrets: "SecretStore"
    cache: "RedisCache"
    # on-behalf-of credentials for signed-in users, held for a request
    # layer; the background reporter only uses partner_credentials
    user_credentials: "CredentialCache"
    # app-only credentials of the partner billing application
    partner_credentials: "CredentialCache"
    operations: "PartnerOperations"
    _closers: "list"

    @classmethod
    def build(cls, config: "Config", metrics: "Metrics") -> "AppContext":
        closers = []

        secrets: "SecretStore"
        if config.keyvault_enabled:
            vault_identity = AadIdentityProvider(
                config.keyvault_application_id,
                _static(config.keyvault_application_secret),
            )
            secrets = KeyVaultSecretStore(
                config.keyvault_url, vault_identity, config.keyvault_authority
            )
            closers += [vault_identity.close, secrets.close]
        else:
            secrets = EnvironmentSecretStore()

        async def resolve_redis_url() -> "str":
            url = await secrets.get(REDIS_CONNECTION_SECRET)
            return url or config.redis_url

        cache = RedisCache(resolve_redis_url, Protector(config.encryption_key))

        app_identity = AadIdentityProvider(
            config.application_id, _secret(secrets, APPLICATION_SECRET)
        )
        partner_identity = AadIdentityProvider(
            config.partner_center_application_id,
            _secret(secrets, PARTNER_CENTER_APPLICATION_SECRET),
        )

        user_credentials = CredentialCache(
            cache, app_identity, config.partner_center_authority, metrics
        )
        partner_credentials = CredentialCache(
            cache, partner_identity, config.partner_center_authority, metrics
        )
        operations = PartnerOperations(
            partner_credentials,
            cache,
            metrics,
            partner_tenant_id=config.partner_center_tenant_id,
            endpoint=config.partner_center_endpoint,
        )
        closers += [operations.close, app_identity.close, partner_identity.close, cache.close]

        logger.info(
            "context_built",
            keyvault=config.keyvault_enabled,
            endpoint=config.partner_center_endpoint,
        )
        return cls(
            config=config,
            metrics=metrics,
            secrets=secrets,
            cache=cache,
            user_credentials=user_credentials,
            partner_credentials=partner_credentials,
            operations=operations,
            _closers=closers,
        )

    async def close(self) -> "None":
        for close in self._closers:
            await close()


def _static(value: "str"):
    async def resolve() -> "str | None":
        return value or None

    return resolve


def _secret(secrets: "SecretStore", name: "str"):
    async def resolve() -> "str | None":
        return await secrets.get(name)

    return resolve
