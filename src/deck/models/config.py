"""Configuration models."""

from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, validator


DEFAULT_BASE_PORTS = {
    "DEV_PORT": 5000,
    "DEBUG_PORT": 9229,
    "WEB_PORT": 8080,
    "HTTPS_PORT": 8443,
    "ANDROID_DEBUG_PORT": 5037,
}


class TemplateRepositoryConfig(BaseModel):
    """Remote template repository settings."""
    repository_url: str = Field(default="https://github.com/chatterzhao/deck-templates.git")
    branch: str = Field(default="main")
    fallback_url: Optional[str] = None


class EngineConfig(BaseModel):
    """Container engine selection."""
    engine: str = Field(default="auto")
    command_timeout: int = Field(default=120, ge=1)
    build_timeout: int = Field(default=1800, ge=1)

    @validator("engine")
    def validate_engine(cls, v):
        """Validate engine type."""
        valid_engines = ["auto", "podman", "docker", "fixture"]
        if v.lower() not in valid_engines:
            raise ValueError(f"Invalid engine: {v}")
        return v.lower()


class EnvironmentConfig(BaseModel):
    """Environment suffix conventions used for name correlation."""
    default_suffix: str = Field(default="dev")
    suffixes: List[str] = Field(default_factory=lambda: ["dev", "test", "prod"])
    production_suffixes: List[str] = Field(default_factory=lambda: ["prod", "production"])


class FilesConfig(BaseModel):
    """Names of the files every resource directory must carry."""
    env_file: str = Field(default=".env")
    compose_file: str = Field(default="compose.yaml")
    build_file: str = Field(default="Dockerfile")
    metadata_file: str = Field(default=".deck-metadata")

    @property
    def required(self) -> List[str]:
        return [self.env_file, self.compose_file, self.build_file]


class PortsConfig(BaseModel):
    """Port allocation settings."""
    base_ports: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_BASE_PORTS))
    max_port: int = Field(default=65535, le=65535)


class LoggingConfig(BaseModel):
    """Logging settings."""
    level: str = Field(default="INFO")

    @validator("level")
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class DeckConfig(BaseModel):
    """Main configuration model."""
    project_root: Path = Field(default=Path("."))
    templates: TemplateRepositoryConfig = Field(default_factory=TemplateRepositoryConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    environments: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @property
    def deck_dir(self) -> Path:
        return Path(self.project_root) / ".deck"

    @property
    def config_file(self) -> Path:
        return self.deck_dir / "config.json"

    @property
    def templates_dir(self) -> Path:
        return self.deck_dir / "templates"

    @property
    def custom_dir(self) -> Path:
        return self.deck_dir / "custom"

    @property
    def images_dir(self) -> Path:
        return self.deck_dir / "images"
