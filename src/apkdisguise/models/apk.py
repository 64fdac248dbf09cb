"""Pydantic models for package identity, toolchain and signing inputs."""

from pydantic import BaseModel


class PackageIdentifier(BaseModel):
    """A package name split into the trusted prefix and a per-app suffix."""

    prefix: str
    """Dotted prefix the device installer trusts (e.g., cn.chinapost)."""

    suffix: str
    """Dotted suffix identifying the app (e.g., sample)."""

    @property
    def name(self) -> str:
        """Composed package name."""
        return f"{self.prefix}.{self.suffix}"

    @property
    def segments(self) -> list[str]:
        """All dotted segments of the composed name."""
        return self.name.split(".")

    def __str__(self) -> str:
        return self.name


class ToolPaths(BaseModel):
    """Locations of the external tools and key material.

    An empty string means the tool was not found.
    """

    decompiler_path: str = ""
    """apktool (jar or wrapper script)."""

    aligner_path: str = ""
    """zipalign binary."""

    signer_path: str = ""
    """apksigner (jar or wrapper script)."""

    keystore_path: str = ""
    """Keystore used by the signer."""

    shell_path: str = ""
    """Device-bridge client (adb)."""

    java_path: str = ""
    """Java launcher, needed when a tool is a .jar."""


class SigningConfig(BaseModel):
    """Credentials and scheme selection for the signer."""

    key_alias: str = "my-alias"
    keystore_pass: str = "123456"
    key_pass: str = "123456"

    v2_enabled: bool = False
    """Also emit a v2 signature block. v1 is always emitted."""
