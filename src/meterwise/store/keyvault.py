import time

import httpx
import structlog

from meterwise.auth.identity import IdentityProvider
from meterwise.errors import SecretStoreError

logger = structlog.get_logger()

KEYVAULT_RESOURCE = "https://vault.azure.net"
KEYVAULT_API_VERSION = "7.4"
NOT_FOUND_ERROR_CODE = "SecretNotFound"


class KeyVaultSecretStore:
    """
    KeyVaultSecretStore reads and writes secrets through the Key Vault
    REST API. It authenticates with its own app-only token, which is
    requested per call since the vault is only read during start-up
    and on cache misses.
    """

    def __init__(
        self,
        vault_url: "str",
        identity: "IdentityProvider",
        authority: "str",
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        if not vault_url:
            raise ValueError("vault_url must not be empty")

        self._vault_url = vault_url.rstrip("/")
        self._identity = identity
        self._authority = authority
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> "None":
        await self._client.aclose()

    async def _headers(self) -> "dict[str, str]":
        credential = await self._identity.acquire_app_only(
            self._authority, KEYVAULT_RESOURCE
        )
        return {"Authorization": f"Bearer {credential.access_token}"}

    async def get(self, name: "str") -> "str | None":
        """
        returns the current value of the secret, or None when the
        vault has no secret with that name.
        """
        if not name:
            raise ValueError("name must not be empty")

        started = time.monotonic()
        try:
            resp = await self._client.get(
                f"{self._vault_url}/secrets/{name}",
                params={"api-version": KEYVAULT_API_VERSION},
                headers=await self._headers(),
            )
        except httpx.HTTPError as exc:
            raise SecretStoreError(f"cannot reach key vault: {exc}") from exc

        if resp.status_code == 404 or _error_code(resp) == NOT_FOUND_ERROR_CODE:
            logger.info("secret_not_found", name=name)
            return None

        if resp.status_code >= 400:
            raise SecretStoreError(
                f"key vault refused secret {name}: {resp.status_code} {_error_code(resp)}"
            )

        logger.debug(
            "secret_fetched",
            name=name,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return resp.json().get("value")

    async def set(self, name: "str", value: "str") -> "None":
        if not name:
            raise ValueError("name must not be empty")
        if value is None:
            raise ValueError("value must not be None")

        try:
            resp = await self._client.put(
                f"{self._vault_url}/secrets/{name}",
                params={"api-version": KEYVAULT_API_VERSION},
                headers=await self._headers(),
                json={"value": value},
            )
        except httpx.HTTPError as exc:
            raise SecretStoreError(f"cannot reach key vault: {exc}") from exc

        if resp.status_code >= 400:
            raise SecretStoreError(
                f"key vault refused to store {name}: {resp.status_code} {_error_code(resp)}"
            )
        logger.info("secret_stored", name=name)


def _error_code(resp: "httpx.Response") -> "str":
    if resp.status_code < 400:
        return ""
    try:
        return str(resp.json().get("error", {}).get("code", ""))
    except ValueError:
        return ""
