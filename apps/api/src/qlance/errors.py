from __future__ import annotations


class QlanceError(RuntimeError):
    pass


class ValidationError(QlanceError):
    pass


class NotFoundError(QlanceError):
    pass


class InvalidStateError(QlanceError):
    def __init__(self, message: str, *, current_status: str) -> None:
        super().__init__(message)
        self.current_status = current_status


class NetworkError(QlanceError):
    pass


class ProtocolError(QlanceError):
    pass


class SigningError(QlanceError):
    pass


class EncodingError(QlanceError, ValueError):
    pass
