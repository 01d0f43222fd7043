"""Outbound email through the Gmail API."""

import asyncio
import base64
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from hndigest.core.config import Settings, get_settings
from hndigest.core.exceptions import MailerError
from hndigest.core.logging import get_logger
from hndigest.services.templates import render_preference_update, render_verification

log = get_logger(__name__)

GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"
TOKEN_URI = "https://oauth2.googleapis.com/token"

VERIFICATION_SUBJECT = "Confirm your Hacker Digest subscription"
PREFERENCE_UPDATE_SUBJECT = "Your Hacker Digest preferences have been updated"


class Mailer(ABC):
    @abstractmethod
    async def send_verification(self, email: str, verify_url: str, strategy_description: str) -> None:
        ...

    @abstractmethod
    async def send_preference_update(self, email: str, old_description: str, new_description: str) -> None:
        ...

    @abstractmethod
    async def send_digest(self, subject: str, html: str, text: str, email: str, unsubscribe_url: str) -> None:
        """Send one digest with RFC 8058 one-click unsubscribe headers."""
        ...


def make_message(
    sender: str,
    to: str,
    subject: str,
    html: str,
    text: str,
    reply_to: str | None = None,
    headers: dict[str, str] | None = None,
) -> dict:
    message = MIMEMultipart("alternative")
    message["from"] = sender
    message["to"] = to
    message["subject"] = subject
    if reply_to:
        message["reply-to"] = reply_to
    for name, value in (headers or {}).items():
        message[name] = value
    message.attach(MIMEText(text, "plain", "utf-8"))
    message.attach(MIMEText(html, "html", "utf-8"))
    raw = base64.urlsafe_b64encode(message.as_bytes()).decode()
    return {"raw": raw}


class GmailMailer(Mailer):
    """Sends as the mailbox behind GMAIL_REFRESH_TOKEN."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def _credentials(self) -> Credentials:
        s = self.settings
        return Credentials(
            token=None,
            refresh_token=s.gmail_refresh_token or None,
            token_uri=TOKEN_URI,
            client_id=s.google_client_id,
            client_secret=s.google_client_secret,
            scopes=[GMAIL_SEND_SCOPE],
        )

    def _send_blocking(self, body: dict) -> str:
        # httplib2 is not thread-safe: one service per send
        service = build("gmail", "v1", credentials=self._credentials(), cache_discovery=False)
        resp = service.users().messages().send(userId="me", body=body).execute()
        return resp.get("id", "")

    async def _send(self, to: str, subject: str, html: str, text: str, headers: dict[str, str] | None = None) -> None:
        body = make_message(
            self.settings.email_from,
            to,
            subject,
            html,
            text,
            reply_to=self.settings.email_reply_to or None,
            headers=headers,
        )
        try:
            message_id = await asyncio.to_thread(self._send_blocking, body)
        except (HttpError, GoogleAuthError, OSError) as e:
            log.error("email_send_failed", recipient=to, subject=subject, error=str(e))
            raise MailerError(f"Failed to send email to {to}") from e
        log.info("email_sent", recipient=to, message_id=message_id)

    async def send_verification(self, email: str, verify_url: str, strategy_description: str) -> None:
        html, text = render_verification(verify_url, strategy_description)
        await self._send(email, VERIFICATION_SUBJECT, html, text)

    async def send_preference_update(self, email: str, old_description: str, new_description: str) -> None:
        html, text = render_preference_update(old_description, new_description)
        await self._send(email, PREFERENCE_UPDATE_SUBJECT, html, text)

    async def send_digest(self, subject: str, html: str, text: str, email: str, unsubscribe_url: str) -> None:
        headers = {
            "List-Unsubscribe": f"<{unsubscribe_url}>",
            "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
        }
        await self._send(email, subject, html, text, headers=headers)
