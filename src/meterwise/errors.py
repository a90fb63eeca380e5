class MeterwiseError(Exception):
    """
    base class for every error raised by meterwise itself.
    """


class SecretStoreError(MeterwiseError):
    """
    the secret store could not be reached or refused the request.
    A secret that simply does not exist is not an error.
    """


class CacheUnavailableError(MeterwiseError):
    """
    the distributed cache could not be reached.
    """


class IdentityProviderError(MeterwiseError):
    """
    the identity provider rejected a token request.
    """

    def __init__(self, message: "str", error_code: "str" = "") -> "None":
        super().__init__(message)
        self.error_code = error_code


class StaleConsentError(IdentityProviderError):
    """
    the user assertion (or the consent behind it) is stale. The
    credential cache answers this by dropping the cached entry and
    retrying once.
    """


class BillingApiError(MeterwiseError):
    """
    the billing API returned a payload that could not be understood.
    """
