from typing import Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error_kind: str
    message: Optional[str] = None
    additional_info: Optional[Any] = None
