from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from hndigest.core.config import Settings
from hndigest.core.exceptions import AppError, BadRequestError, IntegrityError, TransportError
from hndigest.core.logging import get_logger
from hndigest.core.security import normalize_email
from hndigest.deps import get_captcha, get_mailer, get_settings, get_storage, get_strategy_config
from hndigest.models import StrategyConfig
from hndigest.services import subscriptions as subscription_service
from hndigest.services.captcha import CaptchaVerifier
from hndigest.services.mailer import Mailer
from hndigest.storage.base import Storage

router = APIRouter()
log = get_logger(__name__)

CHECK_EMAIL_MESSAGE = "Check your email to confirm your subscription"


class SubscribeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    strategy: str | None = None
    # Honeypot: hidden in the form, only bots fill it
    website: str | None = None
    turnstile_token: str | None = None


@router.post("")
async def subscribe(
    body: SubscribeRequest,
    storage: Storage = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
    captcha: CaptchaVerifier = Depends(get_captcha),
    settings: Settings = Depends(get_settings),
    strategies: StrategyConfig = Depends(get_strategy_config),
):
    """Start a subscription or change an existing one. Same answer either way."""
    if body.website and body.website.strip():
        log.info("subscribe_honeypot_triggered")
        return {"message": CHECK_EMAIL_MESSAGE}

    strategy = strategies.parse(body.strategy)
    email = normalize_email(body.email)
    token = (body.turnstile_token or "").strip()
    if not token:
        raise BadRequestError("Captcha token is required")

    try:
        if not await captcha.verify(token):
            raise BadRequestError("Captcha verification failed")
        await subscription_service.subscribe(storage, mailer, settings, email, strategy)
    except (TransportError, IntegrityError) as e:
        log.error("subscribe_failed", email=email, code=e.code, error=e.message)
        raise AppError("Internal server error", code="INTERNAL_ERROR") from e
    return {"message": CHECK_EMAIL_MESSAGE}
