from datetime import datetime, timezone
from decimal import Decimal

from cryptography.fernet import Fernet

from meterwise.models import Credential, CredentialEntry, MeterRate, RateTable
from meterwise.serialization import (
    Protector,
    decode_credential_entry,
    decode_rate_table,
    derive_fernet_key,
    encode_credential_entry,
    encode_rate_table,
    user_credential_key,
)


class TestKeys:
    def test_user_key_format(self) -> "None":
        assert (
            user_credential_key("https://graph", "oid-9")
            == "Resource::https://graph::Identifier::oid-9"
        )


class TestCodecs:
    def test_credential_entry_keeps_timezone(self) -> "None":
        entry = CredentialEntry(
            identity_key="k",
            resource="r",
            credential=Credential(
                access_token="t",
                expires_at=datetime(2030, 5, 1, 12, 30, tzinfo=timezone.utc),
            ),
            acquired_at=datetime(2030, 5, 1, 11, 30, tzinfo=timezone.utc),
        )

        decoded = decode_credential_entry(encode_credential_entry(entry))

        assert decoded == entry
        assert decoded.expires_at.tzinfo is not None

    def test_rate_table_keeps_decimal_precision(self) -> "None":
        table = RateTable(
            fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            meters={
                "m1": MeterRate(
                    included_quantity=Decimal("0.1"),
                    tiers=((Decimal("0"), Decimal("0.000123456789")),),
                )
            },
            currency="EUR",
        )

        decoded = decode_rate_table(encode_rate_table(table))

        assert decoded.meters["m1"].tiers[0][1] == Decimal("0.000123456789")
        assert decoded.currency == "EUR"


class TestProtector:
    def test_passphrase_is_derived(self) -> "None":
        key = derive_fernet_key("correct horse battery staple")
        Fernet(key)

    def test_real_key_used_as_is(self) -> "None":
        key = Fernet.generate_key()
        assert derive_fernet_key(key.decode()) == key

    def test_wrong_key_reads_as_none(self) -> "None":
        token = Protector("one").protect(b"data")
        assert Protector("two").unprotect(token) is None
        assert Protector("one").unprotect(token) == b"data"
