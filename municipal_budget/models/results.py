"""Outcome returned by user-facing portal operations."""

from typing import Any, Optional

from pydantic import BaseModel


class OperationResult(BaseModel):
    """Success flag, human-readable message and optional payload."""

    success: bool
    message: str
    data: Optional[Any] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> 'OperationResult':
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, message: str) -> 'OperationResult':
        return cls(success=False, message=message)
