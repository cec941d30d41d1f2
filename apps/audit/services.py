"""
Audit services for DealVault
Centralized audit logging for the voucher lifecycle.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from django.contrib.contenttypes.models import ContentType
from django.db import transaction

from .models import AuditEvent

logger = logging.getLogger(__name__)


class AuditJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for audit metadata.

    Decimals are written as strings so value snapshots keep their precision.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        elif isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, Decimal):
            return str(obj)
        elif hasattr(obj, "pk"):  # Django model instance
            return f"{obj.__class__.__name__}(pk={obj.pk})"
        return super().default(obj)


def serialize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Convert a metadata dict into JSONField-safe primitives."""
    if not metadata:
        return {}
    return json.loads(json.dumps(metadata, cls=AuditJSONEncoder, ensure_ascii=False))


@dataclass
class AuditContext:
    """Parameter object for audit event context information"""

    user: Any | None = None
    actor_type: str = "system"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditEventData:
    """
    Parameter object for audit event data

    The content_object.pk is stored as a string so UUID and integer keys
    share one column.
    """

    event_type: str
    content_object: Any
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    description: str = ""


class AuditService:
    """Centralized audit logging service"""

    @staticmethod
    def log_event(event_data: AuditEventData, context: AuditContext | None = None) -> AuditEvent:
        """
        Append an audit event.

        Raises on failure; callers that must not be affected by the audit sink
        use :meth:`log_event_safely` instead.
        """
        if context is None:
            context = AuditContext()

        try:
            audit_event = AuditEvent.objects.create(
                user=context.user,
                actor_type=context.actor_type,
                action=event_data.event_type,
                content_type=ContentType.objects.get_for_model(event_data.content_object),
                object_id=str(event_data.content_object.pk),
                old_values=serialize_metadata(event_data.old_values),
                new_values=serialize_metadata(event_data.new_values),
                description=event_data.description,
                metadata=serialize_metadata(context.metadata),
            )
        except Exception as e:
            logger.error(f"[Audit] Failed to log event {event_data.event_type}: {e}")
            raise

        logger.info(
            f"[Audit] {event_data.event_type} logged for {event_data.content_object.__class__.__name__} "
            f"{event_data.content_object.pk} ({context.actor_type})"
        )
        return audit_event

    @staticmethod
    def log_event_safely(event_data: AuditEventData, context: AuditContext | None = None) -> AuditEvent | None:
        """
        Append an audit event without letting a sink failure escape.

        The insert runs in its own savepoint, so inside a business transaction
        a failed audit write is rolled back alone and the surrounding
        transaction still commits.
        """
        try:
            with transaction.atomic():
                return AuditService.log_event(event_data, context)
        except Exception:
            logger.exception(
                "[Audit] Dropped %s event for %s",
                event_data.event_type,
                getattr(event_data.content_object, "pk", None),
            )
            return None

    @staticmethod
    def events_for(content_object: Any) -> list[AuditEvent]:
        """Return the audit trail of one object, oldest first."""
        return list(
            AuditEvent.objects.filter(
                content_type=ContentType.objects.get_for_model(content_object),
                object_id=str(content_object.pk),
            ).order_by("timestamp")
        )
