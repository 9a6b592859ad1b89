from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Difficulty = Literal["easy", "medium", "difficult"]


class _TourPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class TourCreate(_TourPayload):
    name: str = Field(min_length=10, max_length=40)
    duration: int = Field(gt=0)
    max_group_size: int = Field(gt=0)
    difficulty: Difficulty
    ratings_average: float = Field(default=4.5, ge=1, le=5)
    ratings_quantity: int = Field(default=0, ge=0)
    price: float = Field(gt=0)
    price_discount: Optional[float] = Field(default=None, ge=0)
    summary: str = Field(min_length=1)
    description: Optional[str] = None

    @model_validator(mode="after")
    def _discount_below_price(self):
        if self.price_discount is not None and self.price_discount >= self.price:
            raise ValueError("Discount price should be below the regular price")
        return self


class TourUpdate(_TourPayload):
    name: Optional[str] = Field(default=None, min_length=10, max_length=40)
    duration: Optional[int] = Field(default=None, gt=0)
    max_group_size: Optional[int] = Field(default=None, gt=0)
    difficulty: Optional[Difficulty] = None
    ratings_average: Optional[float] = Field(default=None, ge=1, le=5)
    ratings_quantity: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, gt=0)
    price_discount: Optional[float] = Field(default=None, ge=0)
    summary: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
