from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Base class of all configuration sections.

    Values may be overridden by environment variables prefixed with *ACMEFLOW_*.
    """

    model_config = SettingsConfigDict(env_prefix="ACMEFLOW_", extra="forbid")
