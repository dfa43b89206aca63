from fastapi import APIRouter

from microblog.api.auth import router as auth_router
from microblog.api.health import router as health_router
from microblog.api.posts import router as posts_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(posts_router)
