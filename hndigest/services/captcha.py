"""Cloudflare Turnstile verification. Gates subscription creation only."""

from abc import ABC, abstractmethod

import httpx

from hndigest.core.config import Settings, get_settings
from hndigest.core.exceptions import CaptchaError
from hndigest.core.logging import get_logger

log = get_logger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class CaptchaVerifier(ABC):
    @abstractmethod
    async def verify(self, token: str) -> bool:
        ...


class TurnstileVerifier(CaptchaVerifier):
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    async def verify(self, token: str) -> bool:
        form = {"secret": self.settings.turnstile_secret_key, "response": token}
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(TURNSTILE_VERIFY_URL, data=form)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("captcha_request_failed", error=str(e))
            raise CaptchaError() from e
        success = bool(body.get("success"))
        if not success:
            log.info("captcha_rejected", error_codes=body.get("error-codes", []))
        return success
