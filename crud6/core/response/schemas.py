from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class BaseResponse(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = Field(default=None)
    data: Optional[T] = None


class PaginatedResponse(BaseResponse, Generic[T]):
    total: int = Field(default=0)
    page: int = Field(default=1)
    per_page: int = Field(default=10)
    pages: int = Field(default=1)
    data: List[T] = []


class ErrorDetail(BaseModel):
    field: str = ""
    code: str = Field(default="ERROR")
    message: str = Field(default="Unknown Error")
    target: Optional[str] = Field(default=None)


class ErrorResponse(BaseResponse):
    success: bool = Field(default=False)
    error_code: str = Field(default="ERROR")
    error_details: List[ErrorDetail] = Field(default=[])