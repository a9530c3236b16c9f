class OfflineError(Exception):
    pass


class StorageUnavailable(OfflineError):
    """The local queue database cannot be opened; offline writes are unsupported."""


class StorageIOError(OfflineError):
    """A single queue operation failed against the local database."""


class QueueIntegrityError(OfflineError):
    """A generated local id collided with an existing queue record."""


class RemoteWriteFailure(OfflineError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
