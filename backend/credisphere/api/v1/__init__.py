from fastapi import APIRouter
from credisphere.api.v1 import auth, reports, chat, dashboard

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(reports.router, prefix="/reports", tags=["reports"])
router.include_router(chat.router, prefix="/reports", tags=["chat"])
router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
