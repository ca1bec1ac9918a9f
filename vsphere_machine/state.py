"""Machine lifecycle states as observed from the backend."""

from enum import Enum


class LifecycleState(Enum):
    NONE = "None"
    RUNNING = "Running"
    STOPPED = "Stopped"

    def __str__(self) -> str:
        return self.value


def classify_power_state(raw: str) -> LifecycleState:
    """Map the backend's raw power-state text to a lifecycle state."""
    if "poweredOn" in raw:
        return LifecycleState.RUNNING
    if "poweredOff" in raw:
        return LifecycleState.STOPPED
    return LifecycleState.NONE
