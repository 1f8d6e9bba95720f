class ProtocolError(ValueError):
    """Request could not be parsed; answered with ``status`` and the connection closed."""

    status = 400
    reason = "Bad Request"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)


class BadRequest(ProtocolError):
    pass


class HeaderTooLarge(ProtocolError):
    status = 431
    reason = "Request Header Fields Too Large"


class VersionNotSupported(ProtocolError):
    status = 505
    reason = "HTTP Version Not Supported"
