"""Push notification registration: device tokens the APNs transport delivers to."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.push_token import PushToken

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterPushBody(BaseModel):
    device_token: str = Field(..., min_length=1, max_length=256, description="APNs device token (hex string)")
    platform: str = Field(default="ios", pattern="^(ios|android)$")


@router.post("/push/register")
def register_push_token(
    body: RegisterPushBody,
    db: Session = Depends(get_db),
    user_id: int = Header(..., alias="X-User-Id", ge=1),
):
    """
    Register a device for the user's notifications.
    Call this from the iOS app after receiving the device token from APNs.
    Idempotent: same token is upserted (owner and updated_at refreshed).
    """
    token_str = body.device_token.strip()
    existing = db.query(PushToken).filter(PushToken.device_token == token_str).first()
    if existing:
        existing.user_id = user_id
        existing.updated_at = datetime.now(timezone.utc)
        db.commit()
        return {"ok": True, "message": "Token already registered"}
    db.add(PushToken(user_id=user_id, device_token=token_str, platform=body.platform))
    db.commit()
    logger.info("Registered push token for user=%s platform=%s", user_id, body.platform)
    return {"ok": True, "message": "Token registered"}
