"""
Configuration models for the position tracker.

Uses Pydantic for validation and type safety.
"""
import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from perp_positions.config.dotenv_loader import load_dotenv_files
from perp_positions.constants import (
    ARBITRUM,
    PENDING_POSITION_VALID_SECONDS,
    UPDATED_POSITION_VALID_SECONDS,
    get_chain_spec,
)
from perp_positions.monitoring.logger import get_logger

logger = get_logger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)")


class ChainConfig(BaseSettings):
    """Chain identity and active account."""
    model_config = SettingsConfigDict(extra="ignore")

    chain_id: int = ARBITRUM
    account: Optional[str] = Field(default=None, description="Active trader address; None when no wallet is connected")

    @field_validator("account")
    @classmethod
    def validate_account(cls, v):
        # unset or an unexpanded ${VAR} placeholder from the YAML file
        if v is None or v == "" or v.startswith("$"):
            return None
        if not re.fullmatch(r"0x[0-9a-fA-F]{40}", v):
            raise ValueError(f"account must be a 0x-prefixed 20-byte address, got {v!r}")
        return v


class ReconciliationConfig(BaseSettings):
    """Overlay validity windows."""
    model_config = SettingsConfigDict(extra="ignore")

    pending_position_valid_seconds: float = Field(
        default=PENDING_POSITION_VALID_SECONDS, gt=0,
        description="How long an optimistic pending change is shown after submission",
    )
    updated_position_valid_seconds: float = Field(
        default=UPDATED_POSITION_VALID_SECONDS, gt=0,
        description="How long event-sourced fields override batched reads",
    )


class DisplayConfig(BaseSettings):
    """Display conventions; both PnL variants are always computed."""
    model_config = SettingsConfigDict(extra="ignore")

    show_pnl_after_fees: bool = False
    include_delta_in_leverage: bool = False


class NotificationConfig(BaseSettings):
    """Notification deduplication."""
    model_config = SettingsConfigDict(extra="ignore")

    # None keeps every id for the process lifetime
    dedup_max_entries: Optional[int] = Field(default=None, ge=1)


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = None


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_prefix="PERP_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    chain: ChainConfig = Field(default_factory=ChainConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file, expanding ${VAR} / $VAR from the environment."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found

        expanded_content = _ENV_VAR_PATTERN.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Perform additional validation checks."""
        # raises ValidationError for unsupported chains
        get_chain_spec(self.chain.chain_id)


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml file. If None, uses perp_positions/config/config.yaml

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file not found
        pydantic.ValidationError: If a field fails validation
        perp_positions.exceptions.ValidationError: If the chain is unsupported
    """
    loaded = load_dotenv_files()
    if loaded:
        logger.debug("DOTENV_LOADED", files=[str(p) for p in loaded])

    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"

    config = Config.from_yaml(config_path)
    config.validate_config()

    return config
