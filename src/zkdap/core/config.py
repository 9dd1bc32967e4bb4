"""Configuration management for ZK data access.

Settings follow 12-factor configuration using environment variables
(prefix ``ZKDAP_``) with an optional ``.env`` file. Ceremony entropy is held
as a SecretStr and never displayed in logs.
"""

import os
import logging
from typing import Optional, Literal, Dict, Any
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Configure module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ============ LOGGING ============
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO",
        description="Logging verbosity level"
    )

    # ============ CIRCUIT ============
    curve: Literal["bn128", "bls12_381"] = Field(
        "bn128",
        description="Pairing-friendly curve backing proofs and keys"
    )
    bit_width: int = Field(
        32,
        ge=1,
        le=64,
        description="Bit width of the compared permission values"
    )

    # ============ CEREMONY ============
    ceremony_power: Optional[int] = Field(
        None,
        ge=1,
        le=16,
        description="Powers-of-tau size (2^power gates); smallest sufficient if unset"
    )
    contribution_entropy: Optional[SecretStr] = Field(
        None,
        description="Entropy for a ceremony contribution (prompted for if not provided)"
    )
    build_dir: str = Field(
        "./build",
        description="Directory for circuit, transcript and key artifacts"
    )

    # ============ PROVING / VERIFICATION ============
    prover_workers: int = Field(
        2,
        ge=1,
        le=32,
        description="Thread pool size for async proof generation and verification"
    )
    verify_subgroup_checks: bool = Field(
        True,
        description="Check G2 subgroup membership when decoding untrusted points"
    )

    # ============ GATEWAY ============
    strict_binding: bool = Field(
        False,
        description="Raise PublicSignalMismatchError instead of denying access"
    )

    model_config = SettingsConfigDict(
        env_prefix="ZKDAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names from the environment."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("build_dir")
    @classmethod
    def validate_build_dir(cls, v: str) -> str:
        """Validate and sanitize the artifact directory path."""
        v = os.path.normpath(v)
        if ".." in v.split(os.sep):
            raise ValueError("Path traversal detected in build_dir")
        return v

    def get_contribution_entropy(self) -> Optional[bytes]:
        """Get contribution entropy securely.

        Returns:
            Optional[bytes]: Entropy bytes or None if not set
        """
        if self.contribution_entropy:
            return self.contribution_entropy.get_secret_value().encode("utf-8")
        return None

    def redact_sensitive(self) -> Dict[str, Any]:
        """Return configuration with sensitive values redacted.

        Returns:
            Dict[str, Any]: Safe configuration for logging
        """
        config_dict = self.model_dump()
        config_dict["contribution_entropy"] = (
            "***REDACTED***" if config_dict.get("contribution_entropy") else None
        )
        return config_dict

    def __init__(self, **kwargs):
        """Initialize settings and log the non-sensitive configuration."""
        super().__init__(**kwargs)
        logger.debug(f"Configuration loaded: {self.redact_sensitive()}")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()


# Export singleton instance
settings = get_settings()


__all__ = ["Settings", "settings", "get_settings"]
