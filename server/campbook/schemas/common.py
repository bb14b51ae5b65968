"""Problem Details schemas shared by every router."""

from typing import List, Optional

from pydantic import BaseModel, Field


class Violation(BaseModel):
    path: str = Field(..., description="Dotted location of the invalid field, e.g. body.guest_count")
    message: str = Field(..., description="Validation error message")


class Problem(BaseModel):
    """RFC 9457 Problem Details body, as rendered by the exception handlers."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="Request path that produced the problem")
    code: Optional[str] = Field(None, description="Stable code, e.g. DATE_RANGE_CONFLICT or CARD_DECLINED")
    retryable: Optional[bool] = Field(None, description="True when retrying later may succeed")
    retry_after_seconds: Optional[int] = Field(None, description="Suggested wait before retrying")
    error_id: Optional[str] = Field(None, description="Correlation id for unexpected server errors")
    violations: Optional[List[Violation]] = Field(None, description="Field-level validation errors")


PROBLEM_RESPONSES = {
    400: {"model": Problem, "description": "Invalid input"},
    401: {"model": Problem, "description": "Missing or invalid bearer token"},
    403: {"model": Problem, "description": "Not allowed for this principal"},
    404: {"model": Problem, "description": "Resource not found"},
    409: {"model": Problem, "description": "Conflicts with current state"},
}
