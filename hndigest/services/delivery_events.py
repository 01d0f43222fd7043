"""Reconcile SES bounce and complaint notifications with the subscriber list."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from hndigest.core.exceptions import IntegrityError, InvalidEmailError, MalformedEventError, StorageError
from hndigest.core.logging import get_logger
from hndigest.core.security import normalize_email
from hndigest.storage.base import Storage

log = get_logger(__name__)

PERMANENT_BOUNCE = "Permanent"


class Recipient(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email_address: str = Field(alias="emailAddress")


class Bounce(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bounce_type: str = Field(alias="bounceType")
    bounce_sub_type: str | None = Field(default=None, alias="bounceSubType")
    bounced_recipients: list[Recipient] = Field(default_factory=list, alias="bouncedRecipients")


class Complaint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    complained_recipients: list[Recipient] = Field(default_factory=list, alias="complainedRecipients")
    complaint_feedback_type: str | None = Field(default=None, alias="complaintFeedbackType")


class SesNotification(BaseModel):
    """SES event publishing (eventType) and feedback notifications (notificationType)."""

    model_config = ConfigDict(extra="ignore")

    event_type: str = Field(validation_alias=AliasChoices("eventType", "notificationType"))
    bounce: Bounce | None = None
    complaint: Complaint | None = None


class ReconcileReport(BaseModel):
    event_type: str
    removed: list[str] = Field(default_factory=list)
    not_found: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


async def _is_subscribed(storage: Storage, email: str) -> bool:
    try:
        return await storage.get_subscriber_by_email(email) is not None
    except IntegrityError as e:
        # Unreadable record still belongs to this address
        log.warning("delivery_event_malformed_subscriber", email=email, error=e.message)
        return True


async def _remove_recipients(storage: Storage, recipients: list[Recipient], reason: str, report: ReconcileReport) -> None:
    for recipient in recipients:
        raw = recipient.email_address
        try:
            email = normalize_email(raw)
            if not await _is_subscribed(storage, email):
                log.info("delivery_event_unknown_recipient", email=email, reason=reason)
                report.not_found.append(email)
                continue
            await storage.delete_subscriber(email)
        except InvalidEmailError:
            log.warning("delivery_event_invalid_email", email=raw, reason=reason)
            report.skipped.append(raw)
            continue
        except StorageError as e:
            log.error("delivery_event_remove_failed", email=raw, reason=reason, error=str(e))
            report.skipped.append(raw)
            continue
        log.info("subscriber_removed", email=email, reason=reason)
        report.removed.append(email)


async def handle_delivery_event(storage: Storage, event: SesNotification) -> ReconcileReport:
    """Remove permanently bounced and complaining addresses.

    Each address is handled on its own: one bad address or failed delete does
    not stop the rest. A Bounce or Complaint without its payload is rejected
    as a whole.
    """
    report = ReconcileReport(event_type=event.event_type)

    if event.event_type == "Bounce":
        if event.bounce is None:
            raise MalformedEventError("Bounce event without bounce details")
        if event.bounce.bounce_type != PERMANENT_BOUNCE:
            log.info(
                "non_permanent_bounce",
                bounce_type=event.bounce.bounce_type,
                recipients=[r.email_address for r in event.bounce.bounced_recipients],
            )
            return report
        await _remove_recipients(storage, event.bounce.bounced_recipients, "bounce", report)
        return report

    if event.event_type == "Complaint":
        if event.complaint is None:
            raise MalformedEventError("Complaint event without complaint details")
        await _remove_recipients(storage, event.complaint.complained_recipients, "complaint", report)
        return report

    log.info("delivery_event_ignored", event_type=event.event_type)
    return report
