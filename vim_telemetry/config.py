"""
Configuration for the vSphere telemetry client.

Reads from environment variables (VIM_ prefix) with sensible defaults.
"""

from typing import Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from vim_telemetry.errors import ConfigError

# Fixed request headers sent with every SOAP call
SOAP_ACTION = '"urn:vim25/4.0"'
USER_AGENT = "vim-telemetry/1.0"
CONTENT_TYPE = "text/xml; charset=UTF-8"


class ClientSettings(BaseSettings):
    """Client settings loaded from environment."""

    model_config = SettingsConfigDict(env_prefix="VIM_")

    # SDK endpoint, e.g. https://vcenter.example.com/sdk
    url: str = ""
    username: str = ""
    password: str = ""

    # False disables certificate and hostname checks (self-signed vCenters)
    strict_ssl: bool = False

    # Minimum spacing between the start of two API calls
    api_wait_ms: int = 0

    # Per-call timeouts in seconds
    connect_timeout: float = 5.0
    read_timeout: float = 30.0

    # Parallel metric discovery (1 = sequential)
    max_workers: int = 1

    # Logging
    log_level: str = "INFO"

    def require_endpoint(self) -> str:
        if not self.url:
            raise ConfigError("URL is not set.")
        return self.url

    def require_credentials(self) -> None:
        self.require_endpoint()
        if not self.username or not self.password:
            raise ConfigError("Must set URL, Username, and Password")

    @property
    def timeout(self):
        return (self.connect_timeout, self.read_timeout)


class ResultOptions(BaseModel):
    """Which representations an ApiResult carries besides its error field."""

    send_raw: bool = True
    send_headers: bool = True
    send_json: bool = True
    send_value: bool = True

    @classmethod
    def value_only(cls) -> "ResultOptions":
        return cls(send_raw=False, send_headers=False, send_json=False, send_value=True)


DEFAULT_RESULT_OPTIONS = ResultOptions()


def load_settings(**overrides) -> ClientSettings:
    """Build settings from the environment, letting explicit values win."""
    explicit = {key: value for key, value in overrides.items() if value is not None}
    return ClientSettings(**explicit)


def resolve_options(options: Optional[ResultOptions]) -> ResultOptions:
    return options if options is not None else DEFAULT_RESULT_OPTIONS
