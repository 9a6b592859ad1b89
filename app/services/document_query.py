import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query, Session

from app.core.errors import AppError
from app.schemas.query import FilterOperator, Projection, StructuredQuery


def _bad_filter_value(field: str, kind: str) -> AppError:
    return AppError(f'Invalid filter value for field "{field}" ({kind})', 400)


def _coerce_bool_filter_value(field: str, value):
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in {"1", "true", "yes", "y"}:
        return True
    if text in {"0", "false", "no", "n"}:
        return False
    raise _bad_filter_value(field, "boolean")


def _coerce_number_filter_value(field: str, value, python_type):
    if value is None:
        return None
    if python_type in {int, float} and isinstance(value, (int, float)):
        return python_type(value)
    text = str(value).strip()
    if not text:
        raise _bad_filter_value(field, "number")
    try:
        if python_type is int:
            number = float(text)
            return int(number) if number.is_integer() else number
        if python_type is Decimal:
            return Decimal(text)
        return float(text)
    except (ValueError, TypeError, InvalidOperation, OverflowError):
        raise _bad_filter_value(field, "number")


def _coerce_datetime_filter_value(field: str, value):
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise _bad_filter_value(field, "datetime")
        try:
            if "T" not in text and " " not in text and len(text) == 10:
                # Date-only filter value for timestamp columns -> start of the day.
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise _bad_filter_value(field, "datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _column_python_type(column):
    try:
        return column.property.columns[0].type.python_type
    except (AttributeError, IndexError, NotImplementedError):
        return None


def _coerce_filter_value(field: str, column, value):
    python_type = _column_python_type(column)
    if python_type is uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value or "").strip())
        except ValueError:
            raise _bad_filter_value(field, "id")
    if python_type is bool:
        return _coerce_bool_filter_value(field, value)
    if python_type in {int, float, Decimal}:
        return _coerce_number_filter_value(field, value, python_type)
    if python_type is datetime:
        return _coerce_datetime_filter_value(field, value)
    return value


def _is_date_only_filter_literal(raw_value) -> bool:
    if not isinstance(raw_value, str):
        return False
    text = raw_value.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False


def resolve_column(model, field: str):
    attribute = getattr(model, "__document_fields__", {}).get(field)
    if attribute is None:
        return None
    return getattr(model, attribute, None)


def apply_structured_query(q: Query, model, sq: StructuredQuery) -> Query:
    for f in sq.filters:
        col = resolve_column(model, f.field)
        if col is None:
            continue
        if f.op is FilterOperator.IN:
            values = f.value if isinstance(f.value, list) else [f.value]
            q = q.filter(col.in_([_coerce_filter_value(f.field, col, item) for item in values]))
            continue
        value = _coerce_filter_value(f.field, col, f.value)
        if _column_python_type(col) is datetime and f.op in {FilterOperator.EQ, FilterOperator.NE} and _is_date_only_filter_literal(f.value):
            day_start = value
            day_end = day_start + timedelta(days=1)
            day_expr = (col >= day_start) & (col < day_end)
            q = q.filter(day_expr if f.op is FilterOperator.EQ else ~day_expr)
            continue
        if f.op is FilterOperator.EQ:
            q = q.filter(col == value)
        elif f.op is FilterOperator.NE:
            q = q.filter(col != value)
        elif f.op is FilterOperator.GT:
            q = q.filter(col > value)
        elif f.op is FilterOperator.LT:
            q = q.filter(col < value)
        elif f.op is FilterOperator.GTE:
            q = q.filter(col >= value)
        elif f.op is FilterOperator.LTE:
            q = q.filter(col <= value)
    for s in sq.sort:
        col = resolve_column(model, s.field)
        if col is None:
            continue
        q = q.order_by(asc(col) if s.dir == "asc" else desc(col))
    return q.offset(sq.page.skip).limit(sq.page.limit)


def project_document(document: dict, projection: Projection) -> dict:
    if projection.include:
        keep = {"id", *projection.include}
        return {key: value for key, value in document.items() if key in keep}
    dropped = set(projection.exclude)
    return {key: value for key, value in document.items() if key not in dropped}


def execute_structured_query(db: Session, model, sq: StructuredQuery) -> list[dict]:
    rows = apply_structured_query(db.query(model), model, sq).all()
    return [project_document(row.to_document(), sq.projection) for row in rows]
