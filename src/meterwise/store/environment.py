import os
import re

SECRET_ENV_PREFIX = "METERWISE_SECRET_"


def secret_env_name(name: "str") -> "str":
    """
    ApplicationSecret -> METERWISE_SECRET_APPLICATION_SECRET
    """
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name)
    return SECRET_ENV_PREFIX + snake.upper()


class EnvironmentSecretStore:
    """
    EnvironmentSecretStore serves secrets from environment variables,
    for deployments without a key vault.
    """

    async def get(self, name: "str") -> "str | None":
        if not name:
            raise ValueError("name must not be empty")
        return os.environ.get(secret_env_name(name)) or None

    async def set(self, name: "str", value: "str") -> "None":
        if not name:
            raise ValueError("name must not be empty")
        os.environ[secret_env_name(name)] = value
