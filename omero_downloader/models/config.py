"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from omero_downloader.models.operations import FileRoleFilter

DEFAULT_SERVER = "localhost"
DEFAULT_PORT = 4064
DEFAULT_POLL_INTERVAL = 0.25  # seconds between polls of a remote request
DEFAULT_MAX_WAIT = 300.0  # seconds before a remote request is abandoned


class DownloadConfig(BaseModel):
    """A validated configuration model for the application."""

    # Connection & Authentication
    server: str = DEFAULT_SERVER
    port: int = DEFAULT_PORT
    user: str = ""
    password: str = Field(default="", repr=False)
    session_key: str = Field(default="", repr=False)
    insecure: bool = False

    # Selection
    only_binary: bool = False
    only_companion: bool = False
    whole_fileset: bool = False

    # Download Settings
    base_dir: Optional[Path] = None
    workers: int = 1

    # Remote request polling
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_wait: float = DEFAULT_MAX_WAIT

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("server")
    @classmethod
    def validate_server(cls, v: str) -> str:
        return v or DEFAULT_SERVER

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"Port must be between 1 and 65535, but got: {v}")
        return v

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 16:
            raise ValueError("Workers must be between 1 and 16.")
        return v

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Poll interval must be positive.")
        return v

    @model_validator(mode="after")
    def validate_option_conflicts(self) -> "DownloadConfig":
        """Checks for conflicting download options."""
        if self.only_binary and self.only_companion:
            raise ValueError("cannot combine multiple 'only' options")
        if self.max_wait < self.poll_interval:
            raise ValueError("Maximum wait cannot be shorter than the poll interval.")
        return self

    @model_validator(mode="after")
    def validate_auth(self) -> "DownloadConfig":
        """Validates that either a session key or a username and password is set."""
        if not self.session_key and not (self.user and self.password):
            raise ValueError("must offer username and password or session key")
        return self

    @property
    def role_filter(self) -> FileRoleFilter:
        return FileRoleFilter.from_flags(self.only_binary, self.only_companion)

    @property
    def base_url(self) -> str:
        scheme = "http" if self.insecure else "https"
        return f"{scheme}://{self.server}:{self.port}/api/v1/"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns the keys that may be set in the INI file."""
        secret_fields = {"password", "session_key"}
        return {key for key in cls.model_fields if key not in secret_fields}
