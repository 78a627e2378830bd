class DatabasePhase:
    """Coarse lifecycle state written to `status.phase`."""

    NONE = ""
    PROVISIONING = "Provisioning"
    READY = "Ready"
    HALTED = "Halted"
    TERMINATING = "Terminating"

    # Phases a transition into the key phase may start from. Halted and
    # Terminating are reachable from anywhere.
    _ALLOWED_FROM = {
        PROVISIONING: {NONE, PROVISIONING},
        READY: {PROVISIONING, READY, HALTED},
    }

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        if target in (cls.HALTED, cls.TERMINATING):
            return True
        return (current or cls.NONE) in cls._ALLOWED_FROM.get(target, set())


class ConditionType:
    PROVISIONED = "Provisioned"
    DATA_RESTORED = "DataRestored"
    PAUSED = "Paused"


class ConditionStatus:
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class EventReason:
    INVALID = "Invalid"
    SUCCESSFUL = "Successful"
    FAILED_TO_UPDATE = "FailedToUpdate"
    FAILED_TO_CREATE = "FailedToCreate"
    FAILURE = "Failure"
    HALTED = "Halted"
    TERMINATED = "Terminated"


class EventType:
    NORMAL = "Normal"
    WARNING = "Warning"
