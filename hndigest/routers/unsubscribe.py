from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse

from hndigest.core.config import Settings
from hndigest.core.exceptions import AppError, InvalidTokenError
from hndigest.core.logging import get_logger
from hndigest.core.security import require_token
from hndigest.deps import get_settings, get_storage
from hndigest.routers.verify import redirect_to
from hndigest.services import subscriptions as subscription_service
from hndigest.services.templates import render_unsubscribe_confirm
from hndigest.storage.base import Storage

router = APIRouter()
log = get_logger(__name__)

UNSUBSCRIBE_SUCCESS_PAGE = "/unsubscribe-success.html"
UNSUBSCRIBE_ERROR_PAGE = "/unsubscribe-error.html"
ONE_CLICK_BODY = b"List-Unsubscribe=One-Click"


@router.get("")
async def unsubscribe_page(
    token: str | None = Query(None),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """Confirmation page; a GET never unsubscribes (mail scanners follow links)."""
    try:
        token = require_token(token)
        subscriber = await storage.get_subscriber_by_token(token)
    except AppError as e:
        if e.status_code >= 500:
            log.error("unsubscribe_lookup_failed", code=e.code, error=e.message)
        return redirect_to(settings, UNSUBSCRIBE_ERROR_PAGE)
    if subscriber is None:
        return redirect_to(settings, UNSUBSCRIBE_ERROR_PAGE)
    action_url = f"{settings.base_url.rstrip('/')}/api/unsubscribe?{urlencode({'token': token})}"
    return HTMLResponse(render_unsubscribe_confirm(subscriber.email, action_url))


@router.post("")
async def unsubscribe(
    request: Request,
    token: str | None = Query(None),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """Form submit from the confirmation page, or an RFC 8058 one-click POST from the mail client."""
    try:
        token = require_token(token)
    except InvalidTokenError:
        return PlainTextResponse("Invalid token", status_code=status.HTTP_400_BAD_REQUEST)

    body = await request.body()
    one_click = ONE_CLICK_BODY in body

    try:
        removed = await subscription_service.remove_by_token(storage, token)
    except AppError as e:
        log.error("unsubscribe_failed", code=e.code, error=e.message, one_click=one_click)
        if one_click:
            return PlainTextResponse("Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return redirect_to(settings, UNSUBSCRIBE_ERROR_PAGE)

    if one_click:
        if removed:
            return PlainTextResponse("Unsubscribed successfully")
        return PlainTextResponse("Token not found", status_code=status.HTTP_404_NOT_FOUND)
    return redirect_to(settings, UNSUBSCRIBE_SUCCESS_PAGE if removed else UNSUBSCRIBE_ERROR_PAGE)
