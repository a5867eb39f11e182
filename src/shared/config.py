"""Configuration management for MCP Bridge.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """HTTP surface and protocol identity."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8001)
    namespace: str = Field(default="/mcp/v1", description="Route prefix for the MCP endpoints")
    server_name: str = Field(default="mcp-bridge")
    server_version: str = Field(default="1.2.2")
    protocol_version: str = Field(default="2025-03-26")
    resource_scheme: str = Field(default="wordpress")
    resource_page_size: int = Field(default=10, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class SecuritySettings(BaseSettings):
    """Authentication and security gate configuration."""
    required_capability: str = Field(default="edit_posts")
    allowed_origins: list[str] = Field(default_factory=list)
    allowed_ips: list[str] = Field(default_factory=list)

    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests: int = Field(default=100, gt=0)
    rate_limit_window: int = Field(default=3600, gt=0, description="Window length in seconds")

    # Checked in order when the Authorization header is absent
    auth_fallback_headers: list[str] = Field(
        default_factory=lambda: ["X-Forwarded-Authorization", "Redirect-Authorization"]
    )
    trust_forwarded_for: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_SECURITY_",
        env_file=".env",
        extra="ignore"
    )


class ToolSettings(BaseSettings):
    """Per-tool overrides applied after registration."""
    disabled: list[str] = Field(default_factory=list)
    capabilities: dict[str, str] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_TOOLS_",
        env_file=".env",
        extra="ignore"
    )


class AuditSettings(BaseSettings):
    """Audit log configuration."""
    enabled: bool = Field(default=True)
    log_path: str = Field(default="logs/audit.log")
    buffer_size: int = Field(default=100, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_AUDIT_",
        env_file=".env",
        extra="ignore"
    )


class UserConfig(BaseModel):
    """A user entry as written in the settings file."""
    id: int
    login: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: list[str] = Field(default_factory=lambda: ["subscriber"])
    application_passwords: list[dict[str, str]] = Field(
        default_factory=list,
        description="Entries of {name, password} where password is a stored hash"
    )


class CMSSettings(BaseSettings):
    """Backing content store configuration."""
    backend: str = Field(default="memory", description="Content backend: memory, rest")
    base_url: Optional[str] = Field(default=None, description="Site URL for the rest backend")
    username: Optional[str] = Field(default=None)
    application_password: Optional[str] = Field(default=None)
    timeout_seconds: float = Field(default=30.0, gt=0)
    seed_path: Optional[str] = Field(default=None, description="YAML seed for the memory backend")
    users: list[UserConfig] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_CMS_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    cms: CMSSettings = Field(default_factory=CMSSettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_BRIDGE_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
