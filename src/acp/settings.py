from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from acp.shared.framing import DEFAULT_MAX_MESSAGE_SIZE


class AcpSettings(BaseSettings):
    """Connection settings shared by agents and clients.

    All settings can be configured via environment variables with the prefix ACP_.
    For example, ACP_REQUEST_TIMEOUT=30 will set request_timeout=30.0.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACP_",
        env_file=".env",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    request_timeout: float | None = Field(default=60.0, gt=0)
    """Upper bound in seconds on waiting for the response to an outbound request."""

    prompt_timeout: float = Field(default=600.0, gt=0)
    """Upper bound in seconds on one prompt turn. A turn that runs longer is cancelled."""

    max_message_size: int = Field(default=DEFAULT_MAX_MESSAGE_SIZE, gt=0)
    """Largest accepted NDJSON record, in bytes."""

    terminal_wait_timeout: float = Field(default=300.0, gt=0)
    """How long terminal/wait_for_exit waits for a command before giving up. Agents wait a little longer
    than this for the answer, independently of request_timeout."""

    terminal_output_limit: int = Field(default=1024 * 1024, gt=0)
    """Bytes of output retained per terminal; older output is discarded first."""
