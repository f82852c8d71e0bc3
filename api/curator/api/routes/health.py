from fastapi import APIRouter, Depends

from curator.core.config import Settings, get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "store": settings.store_backend, "environment": settings.environment}
