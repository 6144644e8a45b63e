from fastapi import APIRouter

from app.api.moderation import router as moderation_router
from app.api.rooms import router as rooms_router

router = APIRouter()

router.include_router(rooms_router)
router.include_router(moderation_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Lunexa Rooms API"}
