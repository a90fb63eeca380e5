import os
from dataclasses import dataclass

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
DEFAULT_PARTNER_CENTER_ENDPOINT = "https://api.partnercenter.microsoft.com"


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # seconds between two report cycles
    report_interval: "int" = 3600
    # how far back usage is reported, in months
    report_months: "int" = 3
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"
    # run a single report, print it and exit
    once: "bool" = False

    authority: "str" = DEFAULT_AUTHORITY
    application_id: "str" = ""
    application_tenant_id: "str" = ""

    partner_center_application_id: "str" = ""
    partner_center_tenant_id: "str" = ""
    partner_center_endpoint: "str" = DEFAULT_PARTNER_CENTER_ENDPOINT

    keyvault_url: "str" = ""
    keyvault_application_id: "str" = ""
    keyvault_application_secret: "str" = ""
    keyvault_tenant_id: "str" = ""

    # used only when the vault has no RedisCacheConnectionString
    redis_url: "str" = ""
    # Fernet key or passphrase protecting cached blobs
    encryption_key: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        env = os.environ.get
        return cls(
            authority=env("METERWISE_AUTHORITY", DEFAULT_AUTHORITY),
            application_id=env("METERWISE_APPLICATION_ID", ""),
            application_tenant_id=env("METERWISE_APPLICATION_TENANT_ID", ""),
            partner_center_application_id=env(
                "METERWISE_PARTNER_CENTER_APPLICATION_ID", ""
            ),
            partner_center_tenant_id=env("METERWISE_PARTNER_CENTER_TENANT_ID", ""),
            partner_center_endpoint=env(
                "METERWISE_PARTNER_CENTER_ENDPOINT", DEFAULT_PARTNER_CENTER_ENDPOINT
            ),
            keyvault_url=env("METERWISE_KEYVAULT_URL", ""),
            keyvault_application_id=env("METERWISE_KEYVAULT_APPLICATION_ID", ""),
            keyvault_application_secret=env(
                "METERWISE_KEYVAULT_APPLICATION_SECRET", ""
            ),
            keyvault_tenant_id=env("METERWISE_KEYVAULT_TENANT_ID", ""),
            redis_url=env("METERWISE_REDIS_URL", ""),
            encryption_key=env("METERWISE_ENCRYPTION_KEY", ""),
        )

    @property
    def partner_center_authority(self) -> "str":
        return f"{self.authority.rstrip('/')}/{self.partner_center_tenant_id}"

    @property
    def keyvault_authority(self) -> "str":
        tenant = self.keyvault_tenant_id or self.partner_center_tenant_id
        return f"{self.authority.rstrip('/')}/{tenant}"

    @property
    def keyvault_enabled(self) -> "bool":
        return bool(self.keyvault_url)

    def missing(self) -> "list[str]":
        """
        names of settings that must be set before a report can run.
        """
        required = {
            "METERWISE_PARTNER_CENTER_APPLICATION_ID": self.partner_center_application_id,
            "METERWISE_PARTNER_CENTER_TENANT_ID": self.partner_center_tenant_id,
            "METERWISE_ENCRYPTION_KEY": self.encryption_key,
        }
        if self.keyvault_enabled:
            required["METERWISE_KEYVAULT_APPLICATION_ID"] = self.keyvault_application_id
            required["METERWISE_KEYVAULT_APPLICATION_SECRET"] = (
                self.keyvault_application_secret
            )
        else:
            required["METERWISE_REDIS_URL"] = self.redis_url
        return [name for name, value in required.items() if not value]
