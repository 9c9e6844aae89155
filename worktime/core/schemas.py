from typing import Any, Dict, Generic, Optional, TypeVar
from pydantic import BaseModel, Field, field_serializer
from datetime import datetime, timezone

from worktime.core.logging import request_id_var

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope of every router. Errors are rendered by the handlers in main.py."""

    success: bool = True
    data: Optional[T] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = Field(default_factory=lambda: request_id_var.get() or None)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return value.isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with JSON-serializable values."""
        return self.model_dump(mode="json")

    @classmethod
    def ok(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        return cls(data=data, metadata=metadata or {})
