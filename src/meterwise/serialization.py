import json
from base64 import urlsafe_b64encode
from datetime import datetime
from decimal import Decimal
from hashlib import sha256
from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from meterwise.models import Credential, CredentialEntry, MeterRate, RateTable

logger = structlog.get_logger()

RATE_CARD_KEY = "RateCard"
PARTNER_CENTER_APP_ONLY_KEY = "Resource::PartnerCenter::AppOnly"


def user_credential_key(resource: "str", object_id: "str") -> "str":
    return f"Resource::{resource}::Identifier::{object_id}"


def derive_fernet_key(secret: "str") -> "bytes":
    """
    turns an arbitrary passphrase into a valid Fernet key. A value that
    already is a Fernet key is used as-is.
    """
    raw = secret.encode()
    try:
        Fernet(raw)
        return raw
    except ValueError:
        return urlsafe_b64encode(sha256(raw).digest())


class Protector:
    """
    Protector encrypts and authenticates cache payloads so that what
    lands in the distributed cache is opaque to anyone without the key.
    """

    def __init__(self, key: "str | bytes") -> "None":
        if isinstance(key, str):
            key = derive_fernet_key(key)
        self._fernet: "Fernet" = Fernet(key)

    def protect(self, data: "bytes") -> "bytes":
        return self._fernet.encrypt(data)

    def unprotect(self, token: "bytes") -> "bytes | None":
        """
        returns None when the payload was produced with another key or
        was tampered with, so callers treat it as a cache miss.
        """
        try:
            return self._fernet.decrypt(token)
        except InvalidToken:
            logger.warning("cache_payload_unreadable")
            return None


def _default(value: "Any") -> "Any":
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"cannot serialize {type(value).__name__}")


def dumps(payload: "dict[str, Any]") -> "bytes":
    return json.dumps(payload, default=_default, separators=(",", ":")).encode()


def loads(data: "bytes") -> "dict[str, Any]":
    return json.loads(data, parse_float=Decimal)


def encode_credential_entry(entry: "CredentialEntry") -> "bytes":
    return dumps(
        {
            "identity_key": entry.identity_key,
            "resource": entry.resource,
            "access_token": entry.credential.access_token,
            "expires_at": entry.credential.expires_at,
            "acquired_at": entry.acquired_at,
        }
    )


def decode_credential_entry(data: "bytes") -> "CredentialEntry":
    payload = loads(data)
    return CredentialEntry(
        identity_key=payload["identity_key"],
        resource=payload["resource"],
        credential=Credential(
            access_token=payload["access_token"],
            expires_at=datetime.fromisoformat(payload["expires_at"]),
        ),
        acquired_at=(
            datetime.fromisoformat(payload["acquired_at"])
            if payload.get("acquired_at")
            else None
        ),
    )


def encode_rate_table(table: "RateTable") -> "bytes":
    return dumps(
        {
            "fetched_at": table.fetched_at,
            "currency": table.currency,
            "meters": {
                meter_id: {
                    "included_quantity": meter.included_quantity,
                    "tiers": [[threshold, rate] for threshold, rate in meter.tiers],
                }
                for meter_id, meter in table.meters.items()
            },
        }
    )


def decode_rate_table(data: "bytes") -> "RateTable":
    payload = loads(data)
    return RateTable(
        fetched_at=datetime.fromisoformat(payload["fetched_at"]),
        currency=payload.get("currency", "USD"),
        meters={
            meter_id: MeterRate(
                included_quantity=Decimal(meter["included_quantity"]),
                tiers=tuple(
                    (Decimal(threshold), Decimal(rate))
                    for threshold, rate in meter["tiers"]
                ),
            )
            for meter_id, meter in payload["meters"].items()
        },
    )
