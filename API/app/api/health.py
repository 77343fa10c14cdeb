from fastapi import APIRouter

from app.core.settings import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "studytree-api",
        "app_env": settings.app_env,
    }
