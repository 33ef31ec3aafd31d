from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STORE_PATH = Path("/tmp/mellon/tokens")
DEFAULT_HOST = "localhost:8090"


class MellonSettings(BaseSettings):
    """Settings for the token store and the auth server."""

    model_config = SettingsConfigDict(env_prefix="MELLON_")

    # Token store
    store_path: Path = DEFAULT_STORE_PATH

    # Server settings
    host: str = DEFAULT_HOST
    read_timeout: float = Field(
        30.0,
        gt=0,
        description="Seconds allowed for reading all request headers",
    )
    write_timeout: float = Field(
        30.0,
        gt=0,
        description="Seconds allowed for writing the response",
    )
    max_line_length: int = Field(8192, gt=0)

    log_level: str = "INFO"
