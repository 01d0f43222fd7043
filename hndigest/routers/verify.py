from fastapi import APIRouter, Depends, Query, Response, status

from hndigest.core.config import Settings
from hndigest.core.exceptions import AppError
from hndigest.core.logging import get_logger
from hndigest.core.security import normalize_email, require_token
from hndigest.deps import get_settings, get_storage
from hndigest.services import subscriptions as subscription_service
from hndigest.storage.base import Storage

router = APIRouter()
log = get_logger(__name__)

VERIFY_SUCCESS_PAGE = "/verify-success.html"
VERIFY_ERROR_PAGE = "/verify-error.html"


def redirect_to(settings: Settings, page: str) -> Response:
    return Response(status_code=status.HTTP_303_SEE_OTHER, headers={"Location": f"{settings.site_url.rstrip('/')}{page}"})


@router.get("")
async def verify(
    email: str | None = Query(None),
    token: str | None = Query(None),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """Link from the confirmation email. Always answers with a redirect."""
    try:
        subscriber = await subscription_service.verify_subscription(
            storage, normalize_email(email), require_token(token)
        )
    except AppError as e:
        if e.status_code >= 500:
            log.error("verify_failed", code=e.code, error=e.message)
        return redirect_to(settings, VERIFY_ERROR_PAGE)
    if subscriber is None:
        return redirect_to(settings, VERIFY_ERROR_PAGE)
    return redirect_to(settings, VERIFY_SUCCESS_PAGE)
