"""Exception types raised by facefinder."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class FaceFinderError(Exception):
    """Base class for all facefinder errors."""


class ConfigError(FaceFinderError):
    """Missing or invalid configuration."""


class ServiceError(FaceFinderError):
    """A remote Face or Computer Vision call failed."""

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message
        self.status_code = status_code
        self.code = code


class NotFoundError(ServiceError):
    """The service answered 404 for the requested resource."""


class TrainingTimeoutError(ServiceError):
    """Training did not finish before the configured deadline."""


class FilesystemError(FaceFinderError):
    """A local file or directory could not be read or written."""

    def __init__(self, path: Union[str, Path], message: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = Path(path)
        self.message = message
