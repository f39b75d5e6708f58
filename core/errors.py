"""Error taxonomy for the liveness subsystem."""


class LivenessError(Exception):
    """Base class for liveness errors."""


class StoreUnavailableError(LivenessError):
    """Transient store failure (timeout, connection loss, driver error).

    Callers log it and abandon the operation for the current cycle.
    """


class SubjectNotFoundError(LivenessError):
    """The subject id is not known to the store."""

    def __init__(self, subject_id: str):
        super().__init__(f"subject not found: {subject_id}")
        self.subject_id = subject_id
