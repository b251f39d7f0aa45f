from fastapi import APIRouter
from app.api.v1.endpoints import payments, webhooks

router = APIRouter()

router.include_router(payments.router, prefix="/payments", tags=["payments"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
