import orjson
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hndigest.core.config import Settings
from hndigest.core.exceptions import BadRequestError, ForbiddenError, MalformedEventError
from hndigest.core.logging import get_logger
from hndigest.core.security import verify_shared_secret
from hndigest.deps import get_settings, get_storage
from hndigest.services.delivery_events import SesNotification, handle_delivery_event
from hndigest.storage.base import Storage

router = APIRouter()
log = get_logger(__name__)


class SnsEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(alias="Type")
    message_id: str | None = Field(default=None, alias="MessageId")
    topic_arn: str | None = Field(default=None, alias="TopicArn")
    message: str = Field(default="", alias="Message")
    subscribe_url: str | None = Field(default=None, alias="SubscribeURL")


def _parse_notification(raw: str | bytes | dict) -> SesNotification:
    try:
        if isinstance(raw, dict):
            return SesNotification.model_validate(raw)
        return SesNotification.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedEventError("Notification is not a recognised SES event") from e


@router.post("/ses")
async def ses_notification(
    request: Request,
    key: str | None = Query(None),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    """SES bounce/complaint feed delivered through SNS (enveloped or raw)."""
    if not verify_shared_secret(settings.notification_webhook_secret, key):
        raise ForbiddenError("Invalid notification key")

    try:
        payload = orjson.loads(await request.body())
    except orjson.JSONDecodeError as e:
        raise BadRequestError("Body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise BadRequestError("Body must be a JSON object")

    if "Type" not in payload:
        # Raw message delivery: the body is the SES event itself
        event = _parse_notification(payload)
    else:
        try:
            envelope = SnsEnvelope.model_validate(payload)
        except ValidationError as e:
            raise BadRequestError("Malformed SNS envelope") from e
        if envelope.type != "Notification":
            log.info(
                "sns_message_acknowledged",
                sns_type=envelope.type,
                topic_arn=envelope.topic_arn,
                subscribe_url=envelope.subscribe_url,
            )
            return {"status": "ok"}
        event = _parse_notification(envelope.message)

    report = await handle_delivery_event(storage, event)
    return {
        "status": "ok",
        "event_type": report.event_type,
        "removed": len(report.removed),
        "not_found": len(report.not_found),
        "skipped": len(report.skipped),
    }
