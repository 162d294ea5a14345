from fastapi import APIRouter

from app.features.auth.routes.auth import router as auth_router
from app.features.scan.routes.scan import router as scan_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(auth_router)
api_router.include_router(scan_router)
