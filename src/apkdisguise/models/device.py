"""Pydantic models for Android devices."""

from enum import StrEnum

from pydantic import BaseModel


class TransportState(StrEnum):
    """Connection state of a device as seen by this tool."""

    ONLINE = "online"
    UNAUTHORIZED = "unauthorized"
    DISCONNECTED = "disconnected"

    @classmethod
    def from_adb(cls, raw: str) -> "TransportState":
        """Map an `adb devices` state column to a transport state."""
        if raw == "device":
            return cls.ONLINE
        if raw == "unauthorized":
            return cls.UNAUTHORIZED
        return cls.DISCONNECTED


class Device(BaseModel):
    """Represents a device reported by the bridge daemon."""

    id: str
    """Device serial number or identifier."""

    state: TransportState
    """Current connection state."""

    raw_state: str | None = None
    """State string exactly as adb reported it (e.g. 'offline', 'recovery')."""

    model: str | None = None
    """Device model name (ro.product.model)."""

    product: str | None = None
    """Product name (ro.product.name)."""

    transport_id: str | None = None
    """ADB transport ID."""

    @property
    def is_available(self) -> bool:
        """Check if device is available for commands."""
        return self.state == TransportState.ONLINE

    @property
    def display_name(self) -> str:
        """Human-readable device name."""
        if self.model:
            return f"{self.model} ({self.id})"
        return self.id


class DeviceList(BaseModel):
    """List of discovered devices."""

    devices: list[Device]

    def __len__(self) -> int:
        return len(self.devices)

    def __iter__(self):  # type: ignore[override]
        return iter(self.devices)

    @property
    def available(self) -> list[Device]:
        """Get devices that are available for commands."""
        return [d for d in self.devices if d.is_available]

    def get_by_id(self, device_id: str) -> Device | None:
        """Find a device by its ID."""
        for device in self.devices:
            if device.id == device_id:
                return device
        return None
