"""Exceptions raised inside Counterlink.

Only ``InvalidArgument`` (and its ``DecodeError`` subclass) ever reaches a
presentation layer. Transport failures are converted into a session status
or a failed send result by ``SyncSession``.
"""


class CounterlinkError(Exception):
    """Base class for all Counterlink errors."""


class TransportUnsupported(CounterlinkError):
    """The platform lacks the transport capability."""

    def __init__(self, message: str = "Transport is not supported"):
        super().__init__(message)


class ActivationFailed(CounterlinkError):
    """The transport could not establish the link."""

    def __init__(self, cause: Exception | str):
        self.cause = cause
        super().__init__(f"Activation failed: {cause}")


class SendUnreachable(CounterlinkError):
    """A send was attempted while the peer was not reachable."""

    def __init__(self, message: str = "Peer is not reachable"):
        super().__init__(message)


class SendFailed(CounterlinkError):
    """The transport reported a failure for an in-flight send."""

    def __init__(self, cause: Exception | str):
        self.cause = cause
        super().__init__(f"Send failed: {cause}")


class InvalidArgument(CounterlinkError, ValueError):
    """A command payload was missing a field or had the wrong type."""


class DecodeError(InvalidArgument):
    """A wire message could not be decoded."""
