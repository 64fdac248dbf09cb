"""Confirmation flow gating the destructive uninstall operation."""

from enum import StrEnum

from apkdisguise.models.apps import InstalledApp


class ConfirmState(StrEnum):
    """Where an uninstall confirmation currently stands."""

    IDLE = "idle"
    CONFIRM = "confirm"
    WARNED = "warned"
    INPUT_PENDING = "input_pending"
    FINAL_CONFIRM = "final_confirm"
    CONFIRMED = "confirmed"


# user apps: one step; system apps: warning, type the name, final confirm
USER_FLOW: dict[ConfirmState, ConfirmState] = {
    ConfirmState.CONFIRM: ConfirmState.CONFIRMED,
}
SYSTEM_FLOW: dict[ConfirmState, ConfirmState] = {
    ConfirmState.WARNED: ConfirmState.INPUT_PENDING,
    ConfirmState.INPUT_PENDING: ConfirmState.FINAL_CONFIRM,
    ConfirmState.FINAL_CONFIRM: ConfirmState.CONFIRMED,
}


class UninstallConfirmation:
    """State machine moved forward only by explicit user actions.

    Typical use::

        flow = UninstallConfirmation()
        flow.start(app)
        while not flow.confirmed:
            flow.advance(typed=...)  # or flow.cancel()
    """

    def __init__(self) -> None:
        self.state = ConfirmState.IDLE
        self.app: InstalledApp | None = None

    @property
    def confirmed(self) -> bool:
        return self.state == ConfirmState.CONFIRMED

    @property
    def steps_total(self) -> int:
        """Number of user actions required for the current app."""
        if self.app is None:
            return 0
        return len(SYSTEM_FLOW) if self.app.is_system else len(USER_FLOW)

    def start(self, app: InstalledApp) -> ConfirmState:
        """Begin confirming removal of app."""
        if self.state not in (ConfirmState.IDLE, ConfirmState.CONFIRMED):
            raise RuntimeError(f"Confirmation already in progress for {self.app.package_name}")
        self.app = app
        self.state = ConfirmState.WARNED if app.is_system else ConfirmState.CONFIRM
        return self.state

    def advance(self, typed: str | None = None) -> ConfirmState:
        """Accept the current step.

        Args:
            typed: Text the user typed. Required in INPUT_PENDING, where it
                must equal the package name exactly; otherwise the state
                does not change.

        Returns:
            The new state.
        """
        if self.app is None or self.state in (ConfirmState.IDLE, ConfirmState.CONFIRMED):
            raise RuntimeError(f"Nothing to advance from state {self.state}")

        if self.state == ConfirmState.INPUT_PENDING and typed != self.app.package_name:
            return self.state

        flow = SYSTEM_FLOW if self.app.is_system else USER_FLOW
        self.state = flow[self.state]
        return self.state

    def cancel(self) -> ConfirmState:
        """Abandon the flow from any state."""
        self.state = ConfirmState.IDLE
        self.app = None
        return self.state
