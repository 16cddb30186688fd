"""
Error taxonomy for document analysis and syllabus generation.

Fatal errors (ExtractionFailure, ValidationFailure) abort a request before
or during the pipeline.  StageFailure and MappingFailure are non-fatal: the
pipeline records them next to whatever partial results exist and continues.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class AeroTrainError(Exception):
    """Base class for all domain errors raised by the services."""


class ExtractionFailure(AeroTrainError):
    """Document text is unavailable or unreadable.  Aborts the pipeline."""

    def __init__(self, message: str, document_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class StageFailure(AeroTrainError):
    """An optional analysis stage raised; the pipeline continues without it."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage.replace('_', ' ').capitalize()} failed: {message}")
        self.stage = stage
        self.reason = message

    @property
    def field_name(self) -> str:
        """Name of the response field the failure is reported under."""
        return f"{self.stage}_error"


class MappingFailure(AeroTrainError):
    """The regulatory requirements catalog could not be read."""

    def __init__(self, authority: str, message: str) -> None:
        super().__init__(f"Regulatory mapping for '{authority}' failed: {message}")
        self.authority = authority


class ValidationFailure(AeroTrainError):
    """Generation or extraction options are malformed."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class JobNotFound(AeroTrainError):
    """No generation job is registered under the given id."""


class JobNotReady(AeroTrainError):
    """The generation job has not produced a result (yet)."""

    def __init__(self, generation_id: str, status: str, message: str = "") -> None:
        super().__init__(message or f"Generation {generation_id} is {status}")
        self.generation_id = generation_id
        self.status = status
