from typing import Optional

from fastapi import HTTPException


class ConsoleError(Exception):
    """Base class for errors raised by the console services."""


class QdrantError(ConsoleError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class JobStateError(ConsoleError):
    """Requested job operation is not allowed in the job's current status."""


class StorageConfigError(ConsoleError):
    pass


def http_error(status_code: int, prefix: str, exc: Exception) -> HTTPException:
    return HTTPException(status_code=status_code, detail=f"{prefix}: {exc}")
