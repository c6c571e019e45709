from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class OperationResponse(BaseModel, Generic[T]):
    success: bool = True
    result: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: T) -> "OperationResponse[T]":
        return cls(success=True, result=result)

    @classmethod
    def failed(cls, error: str) -> "OperationResponse[T]":
        return cls(success=False, error=error)


class DeletedOut(BaseModel):
    deleted: int
