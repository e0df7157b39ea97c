"""
Deliver notifications via Apple Push Notification service (APNs).
Requires APNS_KEY_ID, APNS_TEAM_ID, APNS_BUNDLE_ID, and APNS_KEY_P8_PATH or APNS_KEY_P8_BASE64 in env.
If not configured, ApnsTransport reports zero devices (the notification still counts as delivered in-app).
"""
import base64
import logging
import time
from pathlib import Path
from typing import Any

import httpx
import jwt
from sqlalchemy.orm import Session

from app.config import Settings, settings as app_settings
from app.models.push_token import PushToken
from app.services.notifications.types import DeliveryResult

logger = logging.getLogger(__name__)

# APNs host: sandbox for dev builds, production for release
APNS_SANDBOX = "https://api.sandbox.push.apple.com"
APNS_PRODUCTION = "https://api.push.apple.com"

# JWT cache: (token_string, expiry_epoch). APNs accepts tokens with iat within last hour.
_jwt_cache: tuple[str, float] | None = None
_JWT_EXPIRY_SECONDS = 55 * 60  # refresh a bit before 1 hour

# APNs says the token will never work again: drop it
DEAD_TOKEN_REASONS = frozenset({"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"})
DEAD_TOKEN_STATUS = 410


def _load_p8_key(cfg: Settings) -> str | None:
    """Load .p8 key from APNS_KEY_P8_BASE64 or APNS_KEY_P8_PATH. Return None if not set."""
    if cfg.apns_key_p8_base64:
        try:
            return base64.b64decode(cfg.apns_key_p8_base64).decode("utf-8")
        except Exception as e:
            logger.warning("APNS_KEY_P8_BASE64 decode failed: %s", e)
            return None
    path = cfg.apns_key_p8_path
    if path and Path(path).exists():
        try:
            return Path(path).read_text(encoding="utf-8")
        except Exception as e:
            logger.warning("APNS_KEY_P8_PATH read failed: %s", e)
            return None
    return None


def _get_apns_jwt(cfg: Settings) -> str | None:
    """Build and cache JWT for APNs. Returns None if config missing."""
    global _jwt_cache
    if not cfg.apns_key_id or not cfg.apns_team_id:
        return None
    now = time.time()
    if _jwt_cache and _jwt_cache[1] > now:
        return _jwt_cache[0]
    p8 = _load_p8_key(cfg)
    if not p8:
        return None
    try:
        token = jwt.encode(
            {"iss": cfg.apns_team_id, "iat": int(now)},
            p8,
            algorithm="ES256",
            headers={"alg": "ES256", "kid": cfg.apns_key_id},
        )
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        _jwt_cache = (token, now + _JWT_EXPIRY_SECONDS)
        return token
    except Exception as e:
        logger.warning("APNs JWT build failed: %s", e, exc_info=True)
        return None


def build_apns_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Notification fields -> APNs body. Custom keys ride next to `aps` for the app to route on."""
    return {
        "aps": {
            "alert": {"title": payload.get("title", ""), "body": payload.get("message", "")},
            "sound": "default",
        },
        "notification_id": payload.get("notification_id"),
        "type": payload.get("type"),
        "task_id": payload.get("task_id"),
    }


def _reason(resp: httpx.Response) -> str:
    try:
        return (resp.json() or {}).get("reason") or ""
    except ValueError:
        return ""


class ApnsTransport:
    """
    Sends one notification to every push token the user registered.
    Dead tokens (410, BadDeviceToken, Unregistered) are deleted as they are reported.
    """

    def __init__(
        self,
        db: Session,
        cfg: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.db = db
        self.cfg = cfg or app_settings
        self._client = client

    async def send(self, user_id: int, payload: dict[str, Any]) -> DeliveryResult:
        tokens = self.db.query(PushToken).filter(PushToken.user_id == user_id).all()
        if not tokens:
            return DeliveryResult()
        bundle_id = self.cfg.apns_bundle_id
        jwt_token = _get_apns_jwt(self.cfg)
        if not bundle_id or not jwt_token:
            logger.debug("APNs not configured (key/team/bundle); skipping push for user %s", user_id)
            return DeliveryResult()

        base_url = APNS_SANDBOX if self.cfg.apns_use_sandbox else APNS_PRODUCTION
        headers = {
            "authorization": f"bearer {jwt_token}",
            "apns-topic": bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }
        body = build_apns_payload(payload)
        result = DeliveryResult()
        dead: list[PushToken] = []
        client = self._client or httpx.AsyncClient(http2=True, timeout=10.0)
        try:
            for token in tokens:
                url = f"{base_url}/3/device/{token.device_token}"
                try:
                    resp = await client.post(url, json=body, headers=headers)
                except httpx.HTTPError as e:
                    logger.warning("APNs request failed for token %s...: %s", token.device_token[:20], e, exc_info=True)
                    result.failures.append(
                        {"device": token.device_token[:20], "status": None, "reason": type(e).__name__}
                    )
                    continue
                if resp.status_code == 200:
                    result.delivered += 1
                    continue
                reason = _reason(resp)
                logger.warning(
                    "APNs returned %s for token %s...: %s", resp.status_code, token.device_token[:20], reason
                )
                result.failures.append(
                    {"device": token.device_token[:20], "status": resp.status_code, "reason": reason}
                )
                if resp.status_code == DEAD_TOKEN_STATUS or reason in DEAD_TOKEN_REASONS:
                    dead.append(token)
        finally:
            if self._client is None:
                await client.aclose()

        if dead:
            for token in dead:
                self.db.delete(token)
            try:
                self.db.commit()
                logger.info("Removed %s dead push token(s) for user %s", len(dead), user_id)
            except Exception as e:
                logger.warning("Could not remove dead push tokens for user %s: %s", user_id, e, exc_info=True)
                self.db.rollback()
        return result
