"""Shared error classes for the heuristic analyzers and their collaborators."""

from __future__ import annotations

UNEXPECTED_ERROR_CODE = "500_UNEXPECTED"
MODEL_NOT_FOUND_CODE = "404_MODEL_NOT_FOUND"


class AnalysisError(RuntimeError):
    """Base exception raised by the analysis toolkit."""

    def __init__(self, message: str, code: str = "500_ANALYSIS_ERROR") -> None:
        super().__init__(message)
        self.code = code


class NotFoundError(AnalysisError):
    """Raised when a requested program or document does not exist."""

    def __init__(self, message: str, code: str = "404_NOT_FOUND") -> None:
        super().__init__(message, code=code)


class InvalidInputError(AnalysisError):
    """Raised when a predict call receives a malformed input shape."""

    def __init__(self, message: str, code: str = "400_INVALID_INPUT") -> None:
        super().__init__(message, code=code)


class UpstreamFetchError(AnalysisError):
    """Raised when the snapshot provider fails to return data."""

    def __init__(self, message: str, code: str = "502_UPSTREAM_FETCH") -> None:
        super().__init__(message, code=code)


class ModelStorageError(AnalysisError):
    """Raised when persisted model parameters cannot be saved or read."""

    def __init__(self, message: str, code: str = "500_MODEL_STORAGE") -> None:
        super().__init__(message, code=code)
