import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Protocol

import httpx
import structlog

from meterwise.errors import IdentityProviderError, StaleConsentError
from meterwise.models import Credential, utcnow

logger = structlog.get_logger()

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
# AADSTS70002: the assertion or the consent behind it is no longer valid
STALE_CONSENT_CODE = "AADSTS70002"


class IdentityProvider(Protocol):
    """
    IdentityProvider issues access tokens for a resource, either for
    the application itself or on behalf of a signed-in user.
    """

    async def acquire_app_only(self, authority: "str", resource: "str") -> "Credential": ...

    async def acquire_user_assertion(
        self,
        authority: "str",
        resource: "str",
        assertion: "str",
    ) -> "Credential": ...


class AadIdentityProvider:
    """
    AadIdentityProvider talks to an Azure AD style OAuth2 token
    endpoint ({authority}/oauth2/token). The client secret is resolved
    on every request so that a rotated secret is picked up without a
    restart.
    """

    def __init__(
        self,
        client_id: "str",
        resolve_secret: "Callable[[], Awaitable[str | None]]",
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._client_id = client_id
        self._resolve_secret = resolve_secret
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> "None":
        await self._client.aclose()

    async def acquire_app_only(self, authority: "str", resource: "str") -> "Credential":
        return await self._request_token(
            authority,
            {
                "grant_type": "client_credentials",
                "resource": resource,
            },
        )

    async def acquire_user_assertion(
        self,
        authority: "str",
        resource: "str",
        assertion: "str",
    ) -> "Credential":
        if not assertion:
            raise ValueError("assertion must not be empty")

        return await self._request_token(
            authority,
            {
                "grant_type": JWT_BEARER_GRANT,
                "assertion": assertion,
                "requested_token_use": "on_behalf_of",
                "resource": resource,
            },
        )

    async def _request_token(
        self,
        authority: "str",
        form: "dict[str, str]",
    ) -> "Credential":
        if not authority:
            raise ValueError("authority must not be empty")

        secret = await self._resolve_secret()
        if not secret:
            raise IdentityProviderError(
                f"no client secret configured for {self._client_id}"
            )

        url = f"{authority.rstrip('/')}/oauth2/token"
        logger.debug(
            "identity_token_request",
            authority=authority,
            resource=form["resource"],
            grant_type=form["grant_type"],
        )
        resp = await self._client.post(
            url,
            data={**form, "client_id": self._client_id, "client_secret": secret},
        )

        if resp.status_code >= 400:
            raise _token_error(resp)

        return _parse_token(resp.json())


def _token_error(resp: "httpx.Response") -> "IdentityProviderError":
    try:
        body = resp.json()
    except ValueError:
        body = {}

    description = str(body.get("error_description", "")) or resp.text
    codes = [f"AADSTS{code}" for code in body.get("error_codes", [])]
    # older endpoints only put the code in the description
    if not codes and description.startswith("AADSTS"):
        codes = [description.split(":", 1)[0]]
    error_code = codes[0] if codes else str(body.get("error", resp.status_code))

    if STALE_CONSENT_CODE in codes:
        logger.info("identity_stale_consent", error_code=error_code)
        return StaleConsentError(description, error_code=error_code)

    logger.warning(
        "identity_token_rejected",
        status=resp.status_code,
        error_code=error_code,
    )
    return IdentityProviderError(description, error_code=error_code)


def _parse_token(body: "dict") -> "Credential":
    token = body.get("access_token")
    if not token:
        raise IdentityProviderError("token response carried no access_token")

    if "expires_on" in body:
        expires_at = datetime.fromtimestamp(int(body["expires_on"]), tz=timezone.utc)
    else:
        expires_in = int(body.get("expires_in", 3600))
        expires_at = utcnow() + timedelta(seconds=expires_in)

    return Credential(access_token=token, expires_at=expires_at)


def seconds_until(credential: "Credential") -> "float":
    return credential.expires_at.timestamp() - time.time()
