"""Common API response schemas."""

from typing import Generic, Literal, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

EntityType = Literal["deal", "vendor", "contact"]


class ApiResponse(BaseModel, Generic[T]):
    """Consistent JSON envelope for API responses."""

    data: T
