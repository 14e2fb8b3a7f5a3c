"""
Exception types shared across the pipeline.

LLM failures carry the provider's HTTP status so that the retry primitive
and the background processor can classify them without knowing which SDK
produced them.
"""

from typing import Optional


class LabSyncError(Exception):
    """Base class for all service errors."""


class LLMError(LabSyncError):
    """Failure returned by (or on the way to) the LLM provider."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    def __str__(self) -> str:
        if self.status is not None:
            return f"[{self.status}] {self.message}"
        return self.message


class ResponseParseError(LabSyncError):
    """Model response could not be parsed as a JSON object."""


class NotFoundError(LabSyncError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} with id {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(LabSyncError):
    """Invalid input to a service operation."""
