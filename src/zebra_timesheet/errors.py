from __future__ import annotations


class ZebraError(Exception):
    pass


class ConfigError(ZebraError):
    pass


class ValidationError(ZebraError, ValueError):
    pass


class NotFoundError(ZebraError, LookupError):
    pass


class ConflictError(ZebraError, ValueError):
    pass


class DeserializationError(ZebraError):
    pass


class TrackError(ZebraError, RuntimeError):
    pass


class FrameAlreadyStarted(TrackError):
    pass


class NoFrameStarted(TrackError):
    pass


class InvalidTime(TrackError):
    pass


class ZebraApiError(ZebraError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_not_found(self) -> bool:
        return self.status == 404
