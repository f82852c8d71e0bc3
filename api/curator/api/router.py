from fastapi import APIRouter

from curator.api.routes import health, interests, migrations, moderation

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(migrations.router, prefix="/migrations", tags=["migrations"])
api_router.include_router(moderation.router, prefix="/moderation", tags=["moderation"])
api_router.include_router(interests.router, prefix="/interests", tags=["interests"])
