"""Installed application listing for a device."""

from __future__ import annotations

import logging

from apkdisguise.core.adb import DeviceBridge
from apkdisguise.exceptions import DeviceTransportError
from apkdisguise.models.apps import InstalledApp
from apkdisguise.models.device import Device

logger = logging.getLogger(__name__)


class AppInventory:
    """Queries a DeviceBridge for installed apps and filters them.

    The user/system split comes from the device's install-path metadata,
    never from the package name.
    """

    def __init__(self, bridge: DeviceBridge):
        self.bridge = bridge

    def list(
        self,
        device: Device | str,
        include_system: bool = True,
        include_user: bool = True,
        query: str | None = None,
        with_versions: bool = False,
    ) -> list[InstalledApp]:
        """List installed apps.

        Args:
            device: Target device.
            include_system: Keep system apps.
            include_user: Keep user apps.
            query: Case-insensitive substring matched against package and
                display names.
            with_versions: Fetch versionName per app (one dumpsys each, slow).

        Returns:
            Apps sorted by display name, case-insensitively.
        """
        apps = self.bridge.list_packages(device)

        if not include_system:
            apps = [a for a in apps if not a.is_system]
        if not include_user:
            apps = [a for a in apps if a.is_system]
        if query:
            needle = query.lower()
            apps = [
                a
                for a in apps
                if needle in a.package_name.lower() or needle in a.display_name.lower()
            ]

        if with_versions:
            apps = [self._with_version(device, a) for a in apps]

        return sorted(apps, key=lambda a: (a.display_name.lower(), a.package_name))

    def _with_version(self, device: Device | str, app: InstalledApp) -> InstalledApp:
        try:
            version = self.bridge.package_version(device, app.package_name)
        except DeviceTransportError as e:
            logger.debug("no version for %s: %s", app.package_name, e)
            return app
        return app.model_copy(update={"version_label": version})

    def user_apps(self, device: Device | str) -> list[InstalledApp]:
        """Only apps installed by the user."""
        return self.list(device, include_system=False)

    def system_apps(self, device: Device | str) -> list[InstalledApp]:
        """Only apps shipped with the device image."""
        return self.list(device, include_user=False)

    def get(self, device: Device | str, package_name: str) -> InstalledApp | None:
        """Find one app by exact package name."""
        for app in self.bridge.list_packages(device):
            if app.package_name == package_name:
                return app
        return None
