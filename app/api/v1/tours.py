from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, Response
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.context import ClientRequestContext, get_request_context
from app.core.errors import AppError
from app.db.session import get_db
from app.models.tour import Tour
from app.schemas.tours import TourCreate, TourUpdate
from app.services.document_query import execute_structured_query
from app.services.query_translator import QueryTranslator, parse_raw_query

router = APIRouter()

TOP_CHEAP_PRESET = (
    ("limit", "5"),
    ("sort", "-ratingsAverage,price"),
    ("fields", "name,price,ratingsAverage,summary,difficulty"),
)


def _list_tours(db: Session, items) -> dict:
    query = QueryTranslator(parse_raw_query(items)).filter().sort().limit_fields().paginate().query
    tours = execute_structured_query(db, Tour, query)
    return {"status": "success", "results": len(tours), "data": {"tours": tours}}


def _validate_payload(schema, body):
    if not isinstance(body, dict):
        raise AppError("Request body must be a JSON object", 400)
    try:
        return schema.model_validate(body)
    except ValidationError as exc:
        messages = [str(err.get("msg") or "invalid value") for err in exc.errors()]
        raise AppError("Invalid input data. " + ". ".join(messages), 400)


def _get_tour_or_404(db: Session, tour_id: str) -> Tour:
    try:
        key = uuid.UUID(str(tour_id).strip())
    except ValueError:
        raise AppError(f"Invalid id: {tour_id}.", 400)
    tour = db.get(Tour, key)
    if tour is None:
        raise AppError("No tour found with that ID", 404)
    return tour


def _commit(db: Session, tour: Tour) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AppError(f"Duplicate field value: {tour.name}. Please use another value!", 400)
    db.refresh(tour)


@router.get("")
def get_all_tours(request: Request, db: Session = Depends(get_db)):
    return _list_tours(db, request.query_params.multi_items())


@router.get("/top-5-cheap")
def get_top_cheap_tours(request: Request, db: Session = Depends(get_db)):
    preset_keys = {key for key, _ in TOP_CHEAP_PRESET}
    items = [(key, value) for key, value in request.query_params.multi_items() if key not in preset_keys]
    return _list_tours(db, [*items, *TOP_CHEAP_PRESET])


@router.get("/{tour_id}")
def get_tour(tour_id: str, db: Session = Depends(get_db)):
    tour = _get_tour_or_404(db, tour_id)
    return {"status": "success", "data": {"tour": tour.to_document()}}


@router.post("", status_code=201)
def create_tour(
    context: ClientRequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    payload = _validate_payload(TourCreate, context.body)
    tour = Tour(**payload.model_dump())
    db.add(tour)
    _commit(db, tour)
    return {"status": "success", "data": {"tour": tour.to_document()}}


@router.patch("/{tour_id}")
def update_tour(
    tour_id: str,
    context: ClientRequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    tour = _get_tour_or_404(db, tour_id)
    payload = _validate_payload(TourUpdate, context.body)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(tour, key, value)
    _commit(db, tour)
    return {"status": "success", "data": {"tour": tour.to_document()}}


@router.delete("/{tour_id}", status_code=204)
def delete_tour(tour_id: str, db: Session = Depends(get_db)):
    tour = _get_tour_or_404(db, tour_id)
    db.delete(tour)
    db.commit()
    return Response(status_code=204)
