"""Configuration Management - Conversion and Validation Settings.

Settings load from environment variables (prefix ``MADO_BRIDGE_``, nested
with ``__``) and an optional ``.env`` file. Instances are frozen so a
conversion call always sees one consistent configuration.
"""

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class IdentityConfig(BaseSettings):
    """Resource identity generation.

    Deterministic identities make repeated conversions of the same manifest
    produce identical bundles.
    """

    model_config = SettingsConfigDict(env_prefix="MADO_BRIDGE_IDENTITY_", frozen=True)

    deterministic: bool = Field(
        default=True, description="Derive resource ids by hashing DICOM identifiers"
    )


class ConversionDefaults(BaseSettings):
    """Substitute values used when a source field is entirely absent."""

    model_config = SettingsConfigDict(env_prefix="MADO_BRIDGE_DEFAULTS_", frozen=True)

    device_manufacturer: str = Field(
        default="Unknown Manufacturer", description="Device.manufacturer fallback"
    )
    device_model: str = Field(
        default="FHIR-to-MADO Converter", description="Manufacturer's Model Name"
    )
    software_version: str = Field(
        default="mado-bridge-1.0", description="Software Versions fallback"
    )
    institution_name: str = Field(
        default="Unknown Institution", description="Institution Name fallback"
    )
    patient_id_issuer_oid: str = Field(
        default="1.3.6.1.4.1.21297.100.1.1",
        description="Issuer OID when the patient identifier has no system",
    )
    accession_issuer_oid: str = Field(
        default="1.3.6.1.4.1.21297.120.1.1",
        description="Issuer OID for accession numbers without a system",
    )
    retrieve_location_uid: str = Field(
        default="1.3.6.1.4.1.21297.150.1.2",
        description="RetrieveLocationUID written into evidence series",
    )
    requested_procedure_id: str = Field(
        default="RP001", description="Requested Procedure ID in request items"
    )
    placer_order_number: str = Field(
        default="PO001", description="Placer Order Number in request items"
    )
    filler_order_number: str = Field(
        default="FO001", description="Filler Order Number in request items"
    )

    @field_validator(
        "patient_id_issuer_oid", "accession_issuer_oid", "retrieve_location_uid"
    )
    @classmethod
    def validate_oid(cls, v: str) -> str:
        """Reject values that are not dotted-decimal OIDs."""
        parts = v.split(".")
        if not v or not all(part.isdigit() for part in parts):
            raise ValueError(f"not a dotted-decimal OID: {v!r}")
        return v


class ValidationConfig(BaseSettings):
    """Structural validator options."""

    model_config = SettingsConfigDict(
        env_prefix="MADO_BRIDGE_VALIDATION_", frozen=True
    )

    allow_duplicate_references: bool = Field(
        default=False,
        description="Permit the same SOP instance to be referenced more than once",
    )
    check_retrieve_info: bool = Field(
        default=True, description="Check retrieve URL / AE title / location UID"
    )
    max_ae_title_length: int = Field(
        default=16, ge=1, le=64, description="Maximum Retrieve AE Title length"
    )
    mado_profile: bool = Field(
        default=True,
        description="Apply MADO manifest rules: document title, timezone offset, Image Library",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="MADO_BRIDGE_LOG_", frozen=True)

    level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    json_format: bool = Field(default=False, description="Render logs as JSON")
    file: Path | None = Field(default=None, description="Optional log file")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Accept lower-case level names."""
        if isinstance(v, str):
            v = v.upper()
        return v


class Settings(BaseSettings):
    """Main application settings.

    Usage:
        from mado_bridge.core.config import get_settings
        settings = get_settings()
    """

    model_config = SettingsConfigDict(
        env_prefix="MADO_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    app_name: str = Field(default="MADO-Bridge", description="Application name")

    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    defaults: ConversionDefaults = Field(default_factory=ConversionDefaults)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_summary(self) -> str:
        """Get configuration summary."""
        return f"""
MADO-Bridge Configuration
=========================
Identity:
  - Deterministic: {self.identity.deterministic}

Defaults:
  - Manufacturer: {self.defaults.device_manufacturer}
  - Institution: {self.defaults.institution_name}
  - Software Version: {self.defaults.software_version}

Validation:
  - Allow Duplicate References: {self.validation.allow_duplicate_references}
  - Check Retrieve Info: {self.validation.check_retrieve_info}
  - MADO Profile Rules: {self.validation.mado_profile}

Logging:
  - Level: {self.logging.level.value}
  - JSON: {self.logging.json_format}
"""


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings(force_reload: bool = False) -> Settings:
    """Get application settings (singleton).

    Args:
        force_reload: Force reload settings from environment

    Returns:
        Settings instance

    """
    global _settings
    if _settings is None or force_reload:
        _settings = Settings()
    return _settings
