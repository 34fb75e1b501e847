"""
Unified response envelope.
"""
from typing import Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field, field_serializer
from datetime import datetime, timezone
from shared.codes import BusinessCode


T = TypeVar("T")


class ErrorDetail(BaseModel):
    """Error details"""
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """Serialize as UTC ISO8601 with a trailing Z."""
        ts = timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        else:
            ts = ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")


class Response(BaseModel, Generic[T]):
    """Unified response model"""
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class PaginatedData(BaseModel, Generic[T]):
    """Paginated payload"""
    items: list[T]
    total: int
    page: int
    size: int
    pages: int


def success_response(
    data: Any = None,
    message: str = "Success",
    code: int = BusinessCode.SUCCESS
) -> Response:
    """
    Build a success response.

    Args:
        data: payload
        message: human readable message
        code: business code

    Returns:
        Response: envelope
    """
    return Response(
        code=code,
        message=message,
        data=data,
        error=None
    )


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None
) -> Response:
    """
    Build an error response.

    Args:
        code: business code
        message: error message
        error_type: error type name
        details: structured details
        field: offending field, if any
        request_id: request correlation id

    Returns:
        Response: envelope
    """
    return Response(
        code=code,
        message=message,
        data=None,
        error=ErrorDetail(
            type=error_type,
            details=details,
            field=field,
            request_id=request_id
        )
    )


def paginated_response(
    items: list,
    total: int,
    page: int,
    size: int,
    message: str = "Success"
) -> Response[PaginatedData]:
    """Build a paginated success response."""
    pages = (total + size - 1) // size if size > 0 else 0

    return Response(
        code=BusinessCode.SUCCESS,
        message=message,
        data=PaginatedData(
            items=items,
            total=total,
            page=page,
            size=size,
            pages=pages
        ),
        error=None
    )
