from enum import Enum
from typing import Any, List, Literal

from pydantic import BaseModel, computed_field, model_validator

Dir = Literal["asc", "desc"]


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"


class FilterCondition(BaseModel):
    field: str
    op: FilterOperator = FilterOperator.EQ
    value: Any


class SortClause(BaseModel):
    field: str
    dir: Dir = "asc"


class Projection(BaseModel):
    include: List[str] = []
    exclude: List[str] = []

    @model_validator(mode="after")
    def _include_or_exclude(self):
        if self.include and self.exclude:
            raise ValueError("projection cannot both include and exclude fields")
        return self


class PaginationWindow(BaseModel):
    page: int = 1
    limit: int = 100

    @computed_field
    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class StructuredQuery(BaseModel):
    filters: List[FilterCondition] = []
    sort: List[SortClause] = []
    projection: Projection = Projection()
    page: PaginationWindow = PaginationWindow()
