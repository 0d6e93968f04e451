from fastapi import APIRouter

from nettrack.api.routes.activities import router as activities_router
from nettrack.api.routes.auth import router as auth_router
from nettrack.api.routes.chat import router as chat_router
from nettrack.api.routes.friends import router as friends_router
from nettrack.api.routes.health import router as health_router
from nettrack.api.routes.media import router as media_router
from nettrack.api.routes.profile import router as profile_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(profile_router, prefix="/profile", tags=["profile"])
router.include_router(friends_router, prefix="/friends", tags=["friends"])
router.include_router(activities_router, prefix="/activities", tags=["activities"])
router.include_router(chat_router, prefix="/chat", tags=["chat"])
router.include_router(media_router, prefix="/media", tags=["media"])
