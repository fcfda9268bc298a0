"""Exception hierarchy for the lanshare engine."""


class LanshareError(Exception):
    """Base class for every error raised by the engine."""


class TransportError(LanshareError):
    """A socket or TLS connection failed."""


class ProtocolError(LanshareError):
    """A command or response did not follow the wire format."""


class IntegrityError(LanshareError):
    """A downloaded file's checksum does not match the remote digest."""

    def __init__(self, file_name: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for {file_name}: remote={expected} local={actual}"
        )
        self.file_name = file_name
        self.expected = expected
        self.actual = actual


class NotFoundError(LanshareError):
    """The requested file does not exist on the remote peer."""


class SecurityInitializationError(LanshareError):
    """Certificate or trust material could not be loaded."""
