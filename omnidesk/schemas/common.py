from typing import Any, Generic, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    success: bool = True
    data: DataT
    message: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: list[dict[str, Any]] | None = None


class DeletedResponse(BaseModel):
    id: str
    deleted: bool = True
