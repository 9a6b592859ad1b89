from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import SchemaVersionMixin, TimestampMixin, UUIDMixin

class Tour(Base, UUIDMixin, TimestampMixin, SchemaVersionMixin):
    __tablename__ = "tours"

    # Public document field -> mapped attribute. Fields outside this map are not queryable.
    __document_fields__ = {
        "id": "id",
        "name": "name",
        "duration": "duration",
        "maxGroupSize": "max_group_size",
        "difficulty": "difficulty",
        "ratingsAverage": "ratings_average",
        "ratingsQuantity": "ratings_quantity",
        "price": "price",
        "priceDiscount": "price_discount",
        "summary": "summary",
        "description": "description",
        "createdAt": "created_at",
        "__v": "schema_version",
    }

    name: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    max_group_size: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)
    ratings_average: Mapped[float] = mapped_column(Float, default=4.5, nullable=False)
    ratings_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    price_discount: Mapped[float | None] = mapped_column(Float, nullable=True)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_document(self) -> dict:
        document = {}
        for field, attribute in self.__document_fields__.items():
            value = getattr(self, attribute)
            if field == "id":
                value = str(value)
            elif field == "createdAt" and value is not None:
                value = value.isoformat()
            document[field] = value
        return document
