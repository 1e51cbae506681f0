"""Common schemas used across the routers."""

from typing import Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic offset-paginated list.

    Usage:
        response_model=PaginatedResponse[TrayDocumentOut]
    """
    items: list[T]
    total: int
    limit: int
    offset: int
