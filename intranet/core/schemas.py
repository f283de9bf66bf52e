import math
from typing import Any, Dict, List
from pydantic import BaseModel


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


def paginate(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


class ErrorItem(BaseModel):
    msg: str
    code: str = "ERROR"


class ErrorResponse(BaseModel):
    success: bool = False
    errors: List[ErrorItem]

    @classmethod
    def of(cls, message: str, code: str) -> Dict[str, Any]:
        return cls(errors=[ErrorItem(msg=message, code=code)]).model_dump()
