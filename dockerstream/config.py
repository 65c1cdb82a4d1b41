"""Library configuration using Pydantic settings."""

from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class StreamSettings(BaseModel):
    """Settings for streamed response handling."""
    await_timeout: Optional[float] = Field(None, description="Default await_outcome timeout in seconds (None waits forever)")
    connect_timeout: Optional[float] = Field(30.0, description="Timeout for establishing the engine connection")
    sock_read_timeout: Optional[float] = Field(None, description="Maximum idle time between two response chunks")

    @field_validator('*')
    def validate_non_negative(cls, v):
        """Validate that timeouts and sizes are not negative."""
        if v is not None and v < 0:
            raise ValueError("Value must not be negative")
        return v

class ContextSettings(BaseModel):
    """Settings for build context assembly."""
    dockerignore_name: str = Field(".dockerignore", description="Name of the ignore file in the context root")
    default_dockerfile: str = Field("Dockerfile", description="Build-definition file used when none is given")
    external_dockerfile_name: str = Field(
        ".dockerstream.Dockerfile",
        description="In-archive name of a Dockerfile located outside the context root",
    )
    compression: Optional[Literal["gzip"]] = Field(None, description="Compression applied to the context archive")
    spool_max_size: int = Field(16 * 1024 * 1024, description="Archive bytes kept in memory before spooling to disk")

    @field_validator('external_dockerfile_name')
    def validate_archive_name(cls, v: str) -> str:
        """Validate that the injected Dockerfile name is a plain file name."""
        if not v or '/' in v or v in ('.', '..'):
            raise ValueError("Must be a plain file name")
        return v

class Settings(BaseSettings):
    """Library settings."""

    # Engine connection
    DOCKER_HOST: Optional[str] = None
    API_VERSION: str = "auto"

    streaming: StreamSettings = StreamSettings()
    context: ContextSettings = ContextSettings()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DOCKERSTREAM_",
        env_nested_delimiter="__",
        case_sensitive=True,
    )

settings = Settings()
