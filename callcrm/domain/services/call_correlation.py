"""
Call Correlation Engine
Turns a validated webhook payload into a CallLog and an incoming-call event

Pipeline per event:
1. Normalize the caller id
2. Look up the active contact in the tenant (a failed lookup means "unknown caller")
3. Insert the CallLog (status incoming, direction inbound, payload verbatim)
4. Publish the event to the tenant's live agents (best effort)
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from callcrm.domain.errors import DependencyError, ValidationError
from callcrm.domain.interfaces.call_ledger import CallLedger
from callcrm.domain.interfaces.contact_directory import ContactDirectory
from callcrm.domain.interfaces.event_publisher import EventPublisher
from callcrm.domain.models.call_log import CallLog, CallLogCreate, utc_now
from callcrm.domain.models.contact import Contact
from callcrm.domain.models.realtime_messages import IncomingCallEvent
from callcrm.domain.services.phone_normalizer import is_degenerate, normalize
from callcrm.domain.services.webhook_dedup import WebhookDeduplicator

logger = logging.getLogger(__name__)


@dataclass
class CorrelationResult:
    """Outcome of correlating one webhook event."""
    call_log: CallLog
    contact: Optional[Contact]
    event: IncomingCallEvent
    duplicate: bool = False
    lookup_failed: bool = False
    delivered: int = 0

    @property
    def contact_found(self) -> bool:
        return self.contact is not None

    @property
    def call_log_id(self) -> str:
        return self.call_log.id


def _parse_timestamp(value: Any, now: datetime) -> datetime:
    """Provider timestamp as an aware datetime, or now when absent/unparseable."""
    if value is None or value == "":
        return now
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable webhook timestamp {value!r}, using arrival time")
            return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


class CallCorrelationEngine:
    """
    Correlates inbound call webhooks with tenant contacts.

    The engine has no state of its own beyond the optional deduplicator;
    concurrent invocations are independent.
    """

    def __init__(
        self,
        directory: ContactDirectory,
        ledger: CallLedger,
        publisher: EventPublisher,
        deduplicator: Optional[WebhookDeduplicator] = None,
        now: Callable[[], datetime] = utc_now
    ):
        self.directory = directory
        self.ledger = ledger
        self.publisher = publisher
        self.deduplicator = deduplicator
        self._now = now

    async def correlate(self, tenant_id: str, payload: Dict[str, Any]) -> CorrelationResult:
        """
        Correlate one webhook payload.

        Raises:
            ValidationError: tenant or caller_id missing
            DependencyError: CallLog could not be written
        """
        if not tenant_id:
            raise ValidationError("Company ID is required")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        caller_id = payload.get("caller_id")
        if caller_id is None or not str(caller_id).strip():
            raise ValidationError("caller_id is required")

        if self.deduplicator is None:
            return await self._correlate(tenant_id, payload, str(caller_id))

        result, duplicate = await self.deduplicator.run(
            tenant_id,
            _optional_str(payload, "webhook_id"),
            lambda: self._correlate(tenant_id, payload, str(caller_id)),
        )
        if not duplicate:
            return result

        event = result.event.model_copy(update={"duplicate": True})
        return CorrelationResult(
            call_log=result.call_log,
            contact=result.contact,
            event=event,
            duplicate=True,
            lookup_failed=result.lookup_failed,
            delivered=0,
        )

    async def _correlate(self, tenant_id: str, payload: Dict[str, Any], caller_id: str) -> CorrelationResult:
        caller_number = normalize(caller_id)
        if is_degenerate(caller_number):
            logger.warning(f"Caller id {caller_id!r} has no digits; correlating as unknown caller")

        now = self._now()

        # Step 1: Contact lookup. Losing the lookup must never lose the call.
        contact: Optional[Contact] = None
        lookup_failed = False
        if not is_degenerate(caller_number):
            try:
                contact = await self.directory.find_active_by_phone(tenant_id, caller_number)
            except Exception as e:
                lookup_failed = True
                logger.error(
                    f"Contact lookup failed for {caller_number} in tenant {tenant_id}: {e}",
                    exc_info=True
                )

        if contact:
            logger.info(f"Found contact {contact.id} ({contact.name}) for {caller_number}")
        else:
            logger.info(f"Unknown caller {caller_number} for tenant {tenant_id}")

        # Step 2: Call log
        create = CallLogCreate(
            tenant_id=tenant_id,
            contact_id=contact.id if contact else None,
            caller_number=caller_number,
            timestamp=_parse_timestamp(payload.get("timestamp"), now),
            webhook_id=_optional_str(payload, "webhook_id"),
            source=_optional_str(payload, "source"),
            call_type=_optional_str(payload, "call_type"),
            raw_payload=payload,
        )
        try:
            call_log = await self.ledger.create(create)
        except DependencyError:
            raise
        except Exception as e:
            raise DependencyError(f"Failed to create call log: {e}", operation="create_call_log") from e

        logger.info(f"Created call log {call_log.id} for tenant {tenant_id}")

        # Step 3: Fan-out
        event = IncomingCallEvent.from_call_log(call_log, contact, timestamp=now)
        delivered = 0
        try:
            delivered = await self.publisher.publish(tenant_id, event)
        except Exception as e:
            logger.error(
                f"Failed to publish call {call_log.id} to tenant {tenant_id}: {e}",
                exc_info=True
            )

        return CorrelationResult(
            call_log=call_log,
            contact=contact,
            event=event,
            lookup_failed=lookup_failed,
            delivered=delivered,
        )
