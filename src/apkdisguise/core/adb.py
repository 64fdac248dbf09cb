"""ADB wrapper for device discovery and package management."""

import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from apkdisguise.core.identifier import is_valid_package_name
from apkdisguise.exceptions import (
    DeviceNotFoundError,
    DeviceTransportError,
    DeviceUnauthorizedError,
    InstallError,
    ProcessError,
    UninstallError,
    ValidationError,
)
from apkdisguise.models.apps import InstalledApp
from apkdisguise.models.device import Device, DeviceList, TransportState
from apkdisguise.utils.packages import (
    display_name_for,
    is_system_install_path,
    parse_package_line,
)
from apkdisguise.utils.process import ProcessResult, ToolRunner, run_tool

logger = logging.getLogger(__name__)

# stderr fragments adb prints when the transport, not the command, failed
TRANSPORT_ERROR_MARKERS: tuple[str, ...] = (
    "device offline",
    "device unauthorized",
    "no devices/emulators found",
    "device still authorizing",
    "error: closed",
)
DEVICE_NOT_FOUND_RE = re.compile(r"device '[^']*' not found")

# One guard per device id, shared by every bridge in the process
_DEVICE_LOCKS: dict[str, threading.Lock] = {}
_DEVICE_LOCKS_GUARD = threading.Lock()


def is_transport_failure(stderr: str) -> bool:
    """Check whether adb failed to reach the device at all."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in TRANSPORT_ERROR_MARKERS) or bool(
        DEVICE_NOT_FOUND_RE.search(lowered)
    )


class DeviceBridge:
    """Pass-through to the adb daemon.

    Unauthorized or disconnected devices are listed by discover() but every
    other operation refuses them. Install and uninstall against the same
    device id are serialized by a per-device lock shared across bridges.
    """

    def __init__(
        self,
        adb_path: str = "adb",
        runner: ToolRunner = run_tool,
        timeout: float | None = None,
    ):
        """Initialize the bridge.

        Args:
            adb_path: adb client executable.
            runner: Process runner, replaceable in tests.
            timeout: Optional timeout in seconds for each adb call.
        """
        self.adb_path = adb_path or "adb"
        self.runner = runner
        self.timeout = timeout

    @contextmanager
    def device_lock(self, device_id: str) -> Iterator[None]:
        """Hold the mutual-exclusion guard for one device."""
        with _DEVICE_LOCKS_GUARD:
            lock = _DEVICE_LOCKS.setdefault(device_id, threading.Lock())
        with lock:
            yield

    def _adb(self, device_id: str | None, *args: str, check: bool = True) -> ProcessResult:
        """Run an adb command, mapping failures to DeviceTransportError.

        Args:
            device_id: Serial to target with -s, or None for global commands.
            *args: adb arguments.
            check: If True, a non-zero exit is an error.

        Returns:
            ProcessResult of the adb invocation.
        """
        cmd = [self.adb_path]
        if device_id:
            cmd.extend(["-s", device_id])
        cmd.extend(args)

        try:
            result = self.runner(cmd, check=False, timeout=self.timeout)
        except ProcessError as e:
            raise DeviceTransportError(f"adb call failed: {e}") from e

        if not result.success:
            if device_id and "unauthorized" in result.stderr.lower():
                raise DeviceUnauthorizedError(device_id)
            if check or is_transport_failure(result.stderr):
                detail = result.stderr.strip() or result.stdout.strip()
                raise DeviceTransportError(
                    f"adb {' '.join(args)} failed (exit {result.returncode}): {detail}"
                )

        return result

    def is_available(self) -> bool:
        """Check that the adb client can be executed."""
        try:
            return self.runner([self.adb_path, "version"], check=False).success
        except ProcessError:
            return False

    def discover(self) -> DeviceList:
        """List all devices the daemon knows about, in any state.

        Returns:
            DeviceList containing all reported devices.
        """
        result = self._adb(None, "devices", "-l")
        devices = []

        for line in result.lines:
            if not line.strip() or line.startswith(("List of devices", "*")):
                continue

            parts = line.split()
            if len(parts) < 2:
                continue

            device_id = parts[0]
            # "no permissions" spans two columns
            raw_state = parts[1]
            if raw_state == "no" and len(parts) > 2 and parts[2] == "permissions":
                raw_state = "no permissions"

            model = None
            product = None
            transport_id = None

            for part in parts[2:]:
                if part.startswith("model:"):
                    model = part.split(":", 1)[1]
                elif part.startswith("product:"):
                    product = part.split(":", 1)[1]
                elif part.startswith("transport_id:"):
                    transport_id = part.split(":", 1)[1]

            devices.append(
                Device(
                    id=device_id,
                    state=TransportState.from_adb(raw_state),
                    raw_state=raw_state,
                    model=model,
                    product=product,
                    transport_id=transport_id,
                )
            )

        logger.debug("discovered %d device(s)", len(devices))
        return DeviceList(devices=devices)

    def ensure_device(self, device_id: str | None = None) -> Device:
        """Pick a usable device.

        Args:
            device_id: Serial to look for. If None, the single online device.

        Returns:
            The target device.

        Raises:
            DeviceNotFoundError: If no device matches or the choice is ambiguous.
            DeviceUnauthorizedError: If the device has not authorized this host.
            DeviceTransportError: If the device is not online.
        """
        devices = self.discover()

        if device_id:
            device = devices.get_by_id(device_id)
            if not device:
                raise DeviceNotFoundError(f"Device not found: {device_id}")
            self._check_online(device)
            return device

        available = devices.available
        if not available:
            if devices.devices:
                states = [f"{d.id}: {d.raw_state or d.state.value}" for d in devices.devices]
                raise DeviceNotFoundError(
                    f"No available devices. Found: {', '.join(states)}"
                )
            raise DeviceNotFoundError("No devices connected")

        if len(available) > 1:
            ids = [d.id for d in available]
            raise DeviceNotFoundError(
                f"Multiple devices connected: {', '.join(ids)}. "
                "Use --device to specify which one."
            )

        return available[0]

    def _check_online(self, device: Device) -> None:
        if device.state == TransportState.UNAUTHORIZED:
            raise DeviceUnauthorizedError(device.id)
        if device.state != TransportState.ONLINE:
            raise DeviceTransportError(
                f"Device {device.id} is {device.raw_state or device.state.value}"
            )

    def _target(self, device: Device | str) -> Device:
        if isinstance(device, str):
            return self.ensure_device(device)
        self._check_online(device)
        return device

    def shell(self, device: Device | str, command: str | list[str]) -> str:
        """Run a shell command on the device.

        A non-zero exit of the remote command is not an error; transport
        failures are.

        Returns:
            The command's stdout.
        """
        target = self._target(device)
        args = [command] if isinstance(command, str) else list(command)
        result = self._adb(target.id, "shell", *args, check=False)
        return result.stdout

    def list_package_paths(self, device: Device | str) -> dict[str, str | None]:
        """Map every installed package to its base APK path."""
        target = self._target(device)
        result = self._adb(target.id, "shell", "pm", "list", "packages", "-f")

        packages: dict[str, str | None] = {}
        for line in result.lines:
            parsed = parse_package_line(line)
            if parsed:
                name, path = parsed
                packages[name] = path
        return packages

    def list_system_packages(self, device: Device | str) -> set[str]:
        """Names the package manager itself flags as system packages."""
        target = self._target(device)
        result = self._adb(target.id, "shell", "pm", "list", "packages", "-s")

        names: set[str] = set()
        for line in result.lines:
            parsed = parse_package_line(line)
            if parsed:
                names.add(parsed[0])
        return names

    def list_packages(self, device: Device | str) -> list[InstalledApp]:
        """List installed packages, classified by install location.

        A package is a system package when its APK lives on a system
        partition or when `pm list packages -s` reports it (covers updated
        system apps whose current APK sits under /data/app).

        Returns:
            InstalledApp entries in package manager order.
        """
        target = self._target(device)
        paths = self.list_package_paths(target)
        system = self.list_system_packages(target)

        return [
            InstalledApp(
                package_name=name,
                display_name=display_name_for(name),
                is_system=name in system or is_system_install_path(path),
                install_path=path,
            )
            for name, path in paths.items()
        ]

    def package_version(self, device: Device | str, package_name: str) -> str:
        """Read versionName from dumpsys, "" if not reported."""
        output = self.shell(device, ["dumpsys", "package", package_name])
        for line in output.splitlines():
            line = line.strip()
            if line.startswith("versionName="):
                return line.split("=", 1)[1]
        return ""

    def install(self, device: Device | str, artifact_path: Path) -> ProcessResult:
        """Install an APK, replacing any existing package of the same name.

        Uses ``-r`` (replace), ``-t`` (allow test packages) and ``-g`` (grant
        runtime permissions).

        Raises:
            InstallError: If the package manager does not report Success.
        """
        if not artifact_path.is_file():
            raise ValidationError(f"APK to install not found: {artifact_path}")

        target = self._target(device)
        with self.device_lock(target.id):
            logger.info("installing %s on %s", artifact_path.name, target.id)
            result = self._adb(
                target.id, "install", "-r", "-t", "-g", str(artifact_path), check=False
            )

        if not result.success or "Success" not in result.stdout:
            raise InstallError(
                f"Install on {target.id} failed: {result.combined_output or 'no output'}"
            )
        return result

    def uninstall(
        self,
        device: Device | str,
        package_name: str,
        user: int | None = None,
    ) -> ProcessResult:
        """Remove a package. Irreversible; confirmation is the caller's job.

        Args:
            device: Target device.
            package_name: Exact package name.
            user: Uninstall for this user only (``--user N``), the usual way
                to remove a system package without root.

        Raises:
            ValidationError: If package_name is empty or malformed. Raised
                before adb is contacted.
            UninstallError: If the package manager does not report Success.
        """
        if not package_name or not is_valid_package_name(package_name):
            raise ValidationError(f"Refusing to uninstall invalid package name: {package_name!r}")

        target = self._target(device)
        args = ["shell", "pm", "uninstall"]
        if user is not None:
            args.extend(["--user", str(user)])
        args.append(package_name)

        with self.device_lock(target.id):
            logger.warning("uninstalling %s from %s", package_name, target.id)
            result = self._adb(target.id, *args, check=False)

        if "Success" not in result.stdout:
            raise UninstallError(
                f"Uninstall of {package_name} failed: {result.combined_output or 'no output'}"
            )
        return result
