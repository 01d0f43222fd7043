import hmac
import re
import uuid

from hndigest.core.exceptions import InvalidEmailError, InvalidTokenError

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def generate_token() -> str:
    """Opaque random token for verification links and unsubscribe links."""
    return str(uuid.uuid4())


def tokens_match(expected: str, candidate: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


def normalize_email(raw: str | None) -> str:
    """Strip and lower-case; raise InvalidEmailError if it does not look like an address."""
    email = (raw or "").strip().lower()
    if not email or not EMAIL_RE.match(email):
        raise InvalidEmailError()
    return email


def require_token(raw: str | None) -> str:
    if not raw or not raw.strip():
        raise InvalidTokenError("Token is required")
    return raw.strip()


def verify_shared_secret(expected: str, provided: str | None) -> bool:
    """Constant-time check of a webhook secret. An unset secret never matches."""
    if not expected or not provided:
        return False
    return tokens_match(expected, provided)
