import asyncio
import functools
from datetime import datetime, timedelta
from typing import Callable, Protocol

import structlog

from meterwise.auth.identity import IdentityProvider, seconds_until
from meterwise.auth.principal import Principal, require_principal
from meterwise.errors import IdentityProviderError, StaleConsentError
from meterwise.metrics import Metrics
from meterwise.models import Credential, CredentialEntry, utcnow
from meterwise.serialization import (
    decode_credential_entry,
    encode_credential_entry,
    user_credential_key,
)
from meterwise.store.base import CacheDatabase, DistributedCache

logger = structlog.get_logger()

# tokens this close to expiry are treated as already expired, capped at
# half of the token's lifetime
DEFAULT_EXPIRY_SKEW = timedelta(minutes=5)


class CacheHooks(Protocol):
    """
    CacheHooks lets callers observe the credential cache. before_read
    runs ahead of every distributed read and after_write after every
    distributed write.
    """

    async def before_read(self, key: "str") -> "None": ...

    async def after_write(self, key: "str", entry: "CredentialEntry") -> "None": ...


class CredentialCache:
    """
    CredentialCache is a cache-aside layer in front of an identity
    provider.

    Lookups go to the in-process map first, then to the AUTHENTICATION
    namespace of the distributed cache, and only on a miss (or an
    expired entry) to the identity provider. Acquisition for a given
    key is single-flight: the first caller starts one refresh task and
    every concurrent caller awaits that same task. The task is
    forgotten as soon as it finishes.

    Credentials are keyed either by an explicit identity key (app-only
    flows, shared by every caller) or by the current principal's
    object id (user flows, acquired on behalf of that principal).
    """

    def __init__(
        self,
        cache: "DistributedCache",
        identity: "IdentityProvider",
        authority: "str",
        metrics: "Metrics",
        hooks: "CacheHooks | None" = None,
        expiry_skew: "timedelta" = DEFAULT_EXPIRY_SKEW,
        clock: "Callable[[], datetime]" = utcnow,
    ) -> "None":
        if not authority:
            raise ValueError("authority must not be empty")

        self._cache = cache
        self._identity = identity
        self._authority = authority
        self._metrics = metrics
        self._hooks = hooks
        self._skew = expiry_skew
        self._clock = clock
        self._local: "dict[str, CredentialEntry]" = {}
        self._pending: "dict[str, asyncio.Future[Credential]]" = {}

    @property
    def authority(self) -> "str":
        return self._authority

    def derive_key(self, resource: "str", identity_key: "str | None" = None) -> "str":
        """
        returns identity_key verbatim when given, otherwise the
        per-user key of the current principal.
        """
        if not resource:
            raise ValueError("resource must not be empty")
        if identity_key is not None:
            if not identity_key:
                raise ValueError("identity_key must not be empty")
            return identity_key

        principal = require_principal()
        if not principal.object_id:
            raise ValueError("principal has no object identifier")
        return user_credential_key(resource, principal.object_id)

    async def acquire(
        self,
        resource: "str",
        identity_key: "str | None" = None,
    ) -> "Credential":
        """
        returns a valid credential for resource. With an explicit
        identity_key the credential is acquired app-only, otherwise on
        behalf of the current principal.
        """
        key = self.derive_key(resource, identity_key)
        principal = None if identity_key is not None else require_principal()

        cached = await self._lookup(key)
        if cached is not None:
            return cached

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._refresh(key, resource, principal))
            self._pending[key] = pending
            pending.add_done_callback(functools.partial(self._forget, key))
        # a cancelled caller must not cancel the refresh other callers share
        return await asyncio.shield(pending)

    def _forget(self, key: "str", pending: "asyncio.Future[Credential]") -> "None":
        if self._pending.get(key) is pending:
            del self._pending[key]

    async def _refresh(
        self,
        key: "str",
        resource: "str",
        principal: "Principal | None",
    ) -> "Credential":
        # another refresh may have finished between our lookup and now
        cached = await self._lookup(key)
        if cached is not None:
            return cached

        credential = await self._acquire_with_retry(key, resource, principal)
        await self._store(key, resource, credential)
        logger.info(
            "credential_acquired",
            key=key,
            resource=resource,
            expires_in=int(seconds_until(credential)),
        )
        return credential

    async def invalidate(self, resource: "str", identity_key: "str | None" = None) -> "None":
        """
        drops the entry for the derived key from both the in-process
        map and the distributed cache.
        """
        key = self.derive_key(resource, identity_key)
        self._local.pop(key, None)
        await self._cache.delete(CacheDatabase.AUTHENTICATION, key)
        logger.info("credential_invalidated", key=key)

    async def clear(self) -> "None":
        self._local.clear()
        await self._cache.clear(CacheDatabase.AUTHENTICATION)
        logger.info("credential_cache_cleared")

    def _is_fresh(self, entry: "CredentialEntry") -> "bool":
        skew = self._skew
        if entry.acquired_at is not None:
            skew = min(skew, (entry.expires_at - entry.acquired_at) / 2)
        return not entry.credential.is_expired(self._clock() + skew)

    async def _lookup(self, key: "str") -> "Credential | None":
        entry = self._local.get(key)
        if entry is not None and self._is_fresh(entry):
            self._metrics.credential_lookup("local", hit=True)
            return entry.credential
        self._metrics.credential_lookup("local", hit=False)

        if self._hooks is not None:
            await self._hooks.before_read(key)

        data = await self._cache.get(CacheDatabase.AUTHENTICATION, key)
        if data is None:
            self._metrics.credential_lookup("distributed", hit=False)
            return None

        try:
            entry = decode_credential_entry(data)
        except (ValueError, KeyError) as exc:
            logger.warning("credential_entry_unreadable", key=key, error=str(exc))
            self._metrics.credential_lookup("distributed", hit=False)
            return None

        if not self._is_fresh(entry):
            logger.debug("credential_expired", key=key, expires_at=entry.expires_at)
            self._metrics.credential_lookup("distributed", hit=False)
            return None

        self._metrics.credential_lookup("distributed", hit=True)
        self._local[key] = entry
        return entry.credential

    async def _store(self, key: "str", resource: "str", credential: "Credential") -> "None":
        entry = CredentialEntry(
            identity_key=key,
            resource=resource,
            credential=credential,
            acquired_at=self._clock(),
        )
        self._local[key] = entry
        # no TTL: readers check the token's own expiry
        await self._cache.set(
            CacheDatabase.AUTHENTICATION, key, encode_credential_entry(entry)
        )
        if self._hooks is not None:
            await self._hooks.after_write(key, entry)

    async def _acquire_with_retry(
        self,
        key: "str",
        resource: "str",
        principal: "Principal | None",
    ) -> "Credential":
        try:
            return await self._request(resource, principal)
        except StaleConsentError:
            logger.warning("credential_stale_consent", key=key, resource=resource)
            self._local.pop(key, None)
            await self._cache.delete(CacheDatabase.AUTHENTICATION, key)
            return await self._request(resource, principal)

    async def _request(
        self,
        resource: "str",
        principal: "Principal | None",
    ) -> "Credential":
        flow = "app_only" if principal is None else "user_assertion"
        try:
            if principal is None:
                credential = await self._identity.acquire_app_only(
                    self._authority, resource
                )
            else:
                credential = await self._identity.acquire_user_assertion(
                    self._authority, resource, principal.assertion
                )
        except IdentityProviderError as exc:
            self._metrics.identity_request(flow, exc.error_code or "error")
            raise

        self._metrics.identity_request(flow, "ok")
        return credential
