from fastapi import APIRouter
from app.api.v1 import tours

router = APIRouter()
router.include_router(tours.router, prefix="/tours", tags=["Tours"])
