from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from cafeteria_pay.config import Settings
from cafeteria_pay.deps import get_app_settings

router = APIRouter()


@router.get("")
def health(settings: Settings = Depends(get_app_settings)):
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "provider": settings.PAYMENT_PROVIDER,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
