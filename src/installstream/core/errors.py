"""Error taxonomy for the installation stream."""


class InstallStreamError(Exception):
    """Base class for all installstream errors."""


class TransportError(InstallStreamError):
    """The channel failed to open or dropped, or the start request never completed."""


class MalformedEvent(InstallStreamError):
    """An inbound event could not be parsed or carries no usable text."""


class ConfigurationError(InstallStreamError):
    """A session was set up without a mandatory collaborator."""


class RequestRejected(InstallStreamError):
    """The installer refused to start the operation."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OperationAbandoned(InstallStreamError):
    """The session was disconnected before it produced an outcome."""
