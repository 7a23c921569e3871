"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from arena.schemas.generation import (
    GenerateRequest,
    ReferenceImageIn,
)

__all__ = [
    "GenerateRequest",
    "ReferenceImageIn",
]
