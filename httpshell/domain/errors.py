"""Error taxonomy for the server lifecycle."""


class ServerError(Exception):
    """Base class for lifecycle-level failures."""


class BindFailure(ServerError):
    """Raised when the listening socket cannot be acquired."""

    def __init__(self, address: str, cause: OSError) -> None:
        super().__init__(f"could not bind {address}: {cause}")
        self.address = address
        self.cause = cause


class UnexpectedListenerFailure(ServerError):
    """Raised when the accept loop dies without shutdown having been requested."""

    def __init__(self, address: str, cause: BaseException) -> None:
        super().__init__(f"listener on {address} failed: {cause}")
        self.address = address
        self.cause = cause


class LifecycleError(ServerError):
    """Raised on an operation that is illegal in the current lifecycle state."""
