from typing import Literal

from pydantic import model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from gateway.utils.settings_utils import DockerSecretsSettingsSource


class GeneralConfig(BaseSettings):
    PUBLIC_API_URL: str = ""
    """Public URL of the gateway, used as the realm of auth challenges.
    When empty it is derived per request as https://<request host>
    """

    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = ""


class RegistryConfig(BaseSettings):
    REGISTRY_URL: str = "https://registry-1.docker.io"
    REGISTRY_AUTH_URL: str = "https://auth.docker.io/token"
    REGISTRY_AUTH_SERVICE: str = "registry.docker.io"
    REGISTRY_REQUEST_TIMEOUT_SECONDS: float = 120.0
    REGISTRY_UNAUTHORIZED_STRATEGY: Literal["passive", "active"] = "passive"

    @model_validator(mode="after")
    def validate_timeout(self):
        if self.REGISTRY_REQUEST_TIMEOUT_SECONDS <= 0:
            raise ValueError("REGISTRY_REQUEST_TIMEOUT_SECONDS must be positive")
        return self


class TokenConfig(BaseSettings):
    TOKEN_CACHE_TTL_SECONDS: float = 240.0
    TOKEN_LIFETIME_SECONDS: int = 300
    """Nominal lifetime of tokens issued by the auth service"""

    TOKEN_RATE_LIMIT_BACKOFF_SECONDS: float = 10.0

    @model_validator(mode="after")
    def validate_cache_ttl(self):
        """Cached tokens must expire before the issuer's tokens do"""
        if self.TOKEN_CACHE_TTL_SECONDS >= self.TOKEN_LIFETIME_SECONDS:
            raise ValueError(
                "TOKEN_CACHE_TTL_SECONDS must be shorter than TOKEN_LIFETIME_SECONDS"
            )
        if self.TOKEN_RATE_LIMIT_BACKOFF_SECONDS < 0:
            raise ValueError("TOKEN_RATE_LIMIT_BACKOFF_SECONDS cannot be negative")
        return self


class Settings(
    GeneralConfig,
    RegistryConfig,
    TokenConfig,
    BaseSettings,
):
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.prod", ".env.test"),
        extra="allow",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Define the priority order for settings sources.

        Priority (highest to lowest):
        1. Explicit keyword arguments
        2. Docker secrets from files (reads *_FILE env vars)
        3. Environment variables
        4. .env files
        5. Default values
        """
        return (
            init_settings,
            DockerSecretsSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


settings = Settings()
