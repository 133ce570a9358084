from fastapi import APIRouter

from portal.api.v1.endpoints import auth, admin, team, profile, files, messages, news

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(team.router, prefix="/team", tags=["team"])
api_router.include_router(profile.router, prefix="/profile", tags=["profile"])
api_router.include_router(files.router, prefix="/files", tags=["files"])
api_router.include_router(messages.router, prefix="/messages", tags=["messages"])
api_router.include_router(news.router, prefix="/news", tags=["news"])
