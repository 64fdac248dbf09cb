"""Typed exception hierarchy for apkdisguise."""


class DisguiseError(Exception):
    """Base exception for all apkdisguise errors."""

    pass


class ConfigurationError(DisguiseError):
    """Raised when the toolchain or filesystem is not usable for a run."""

    pass


class ToolNotFoundError(ConfigurationError):
    """Raised when a required external tool is not installed."""

    def __init__(self, tool: str, install_hint: str | None = None):
        self.tool = tool
        self.install_hint = install_hint
        message = f"Required tool not found: {tool}"
        if install_hint:
            message += f"\nInstall: {install_hint}"
        super().__init__(message)


class ProcessError(DisguiseError):
    """Raised when a subprocess command fails."""

    def __init__(self, command: list[str], returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        cmd_str = " ".join(command)
        super().__init__(f"Command failed (exit {returncode}): {cmd_str}\n{stderr}")


class ToolInvocationError(DisguiseError):
    """Raised when a pipeline tool exits non-zero or cannot be spawned."""

    def __init__(self, stage: str, message: str, output: str = ""):
        self.stage = stage
        self.output = output
        super().__init__(message)


class CorruptArtifactError(ToolInvocationError):
    """Raised when a tool succeeds but its expected output is missing."""

    pass


class SigningError(ToolInvocationError):
    """Raised when APK signing fails (bad keystore, credentials, crash)."""

    pass


class RunCancelledError(ToolInvocationError):
    """Raised when a pipeline run is cancelled mid-stage."""

    pass


class ManifestError(DisguiseError):
    """Raised when the decoded AndroidManifest.xml cannot be patched."""

    pass


class ManifestNotFoundError(ManifestError):
    """Raised when the decoded tree contains no AndroidManifest.xml."""

    pass


class ManifestMalformedError(ManifestError):
    """Raised when the manifest has no structurally locatable package attribute."""

    pass


class ValidationError(DisguiseError):
    """Raised when caller input is rejected before any process is spawned."""

    pass


class InvalidIdentifierError(ValidationError):
    """Raised when a package identifier violates the naming rules."""

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Invalid package name '{identifier}': {reason}")


class PipelineBusyError(DisguiseError):
    """Raised when a run is requested while another one is active."""

    pass


class DeviceTransportError(DisguiseError):
    """Raised when a device operation fails at the transport level."""

    pass


class DeviceNotFoundError(DeviceTransportError):
    """Raised when no device is connected or specified device not found."""

    pass


class DeviceUnauthorizedError(DeviceTransportError):
    """Raised when a device has not authorized this host for debugging."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(
            f"Device {device_id} is unauthorized. "
            "Accept the USB debugging prompt on the device and retry."
        )


class InstallError(DeviceTransportError):
    """Raised when the package manager rejects an install."""

    pass


class UninstallError(DeviceTransportError):
    """Raised when the package manager rejects an uninstall."""

    pass
