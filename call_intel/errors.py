"""
Error taxonomy for the call intelligence core.

Services raise these; orchestration entry points turn them into
structured failure results and the API maps them to status codes.
"""

from __future__ import annotations


class CallIntelError(Exception):
    """Base class for all expected, recoverable core errors."""


class ValidationError(CallIntelError):
    """Malformed or insufficient input. Carries every violated rule."""

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(CallIntelError):
    """
    Entity missing or owned by someone else.

    The message is identical in both cases so tenants cannot probe
    for each other's record ids.
    """

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ExternalServiceError(CallIntelError):
    """A collaborator (transcription, extraction model) failed or timed out."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"{service}: {message}")


class ConflictError(CallIntelError):
    """A uniqueness or compare-and-set race was lost at the store layer."""
