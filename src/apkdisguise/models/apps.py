"""Pydantic models for installed applications and package prefixes."""

from enum import StrEnum

from pydantic import BaseModel


class InstalledApp(BaseModel):
    """An application package installed on a device."""

    package_name: str
    """Full package name (e.g., com.example.app)."""

    display_name: str
    """Human-readable name derived for listing."""

    version_label: str = ""
    """Version string (e.g., 1.0.0); empty until fetched."""

    is_system: bool
    """Whether the device reports this as a system package."""

    install_path: str | None = None
    """Path of the base APK on the device."""


class PrefixOrigin(StrEnum):
    """Where a trusted prefix candidate came from."""

    RECOMMENDED = "recommended"
    OBSERVED = "observed"


class TrustedPrefixCandidate(BaseModel):
    """A package-name prefix the device installer likely allows."""

    prefix: str
    """Leading two dotted segments (e.g., cn.chinapost)."""

    occurrence_count: int
    """Number of installed packages sharing this prefix."""

    origin: PrefixOrigin
    """Curated seed or observed on the device."""
