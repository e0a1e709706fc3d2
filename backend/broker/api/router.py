from fastapi import APIRouter

from .routes.federation import api_alias_router, router as federation_router
from .routes.oauth import router as oauth_router
from .routes.utils.health import router as health_router

router = APIRouter()
router.include_router(oauth_router)
router.include_router(federation_router)
router.include_router(api_alias_router)
router.include_router(health_router, prefix="/api")
