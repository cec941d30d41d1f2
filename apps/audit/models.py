"""
Audit models for tracking voucher lifecycle changes.
Append-only trail written inside the same transaction as the change it records.
"""

from __future__ import annotations

import uuid
from typing import Any, ClassVar

from django.conf import settings
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.core.exceptions import ValidationError
from django.db import models


class AppendOnlyQuerySet(models.QuerySet):
    """QuerySet that refuses bulk mutation of append-only rows."""

    def update(self, **kwargs: Any) -> int:
        raise ValidationError(f"{self.model.__name__} records are append-only and cannot be updated")

    def delete(self) -> tuple[int, dict[str, int]]:
        raise ValidationError(f"{self.model.__name__} records are append-only and cannot be deleted")


class AuditEvent(models.Model):
    """Immutable audit log for voucher lifecycle events."""

    ACTION_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        # State transitions
        ("voucher_issued", "Voucher Issued"),
        ("voucher_assigned", "Voucher Assigned To Purchase"),
        ("voucher_redeemed", "Voucher Redeemed"),
        # Rejected attempts
        ("purchase_failed", "Purchase Failed"),
        ("redemption_failed", "Redemption Failed"),
        # Monitoring
        ("purchase_review_flagged", "Purchase Flagged For Review"),
    )

    ACTOR_TYPE_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        ("system", "System"),
        ("vendor", "Vendor"),
        ("customer", "Customer"),
        ("admin", "Admin"),
    )

    # Unique event ID
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # When
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    # Who
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_events",
    )
    actor_type = models.CharField(max_length=20, choices=ACTOR_TYPE_CHOICES, default="system")

    # What
    action = models.CharField(max_length=40, choices=ACTION_CHOICES, db_index=True)

    # What object (generic foreign key, string id for UUID primary keys)
    content_type = models.ForeignKey(ContentType, on_delete=models.PROTECT)
    object_id = models.CharField(max_length=36, db_index=True)
    content_object = GenericForeignKey("content_type", "object_id")

    # Changes
    old_values = models.JSONField(default=dict, blank=True)
    new_values = models.JSONField(default=dict, blank=True)

    # Context
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        db_table = "audit_event"
        ordering: ClassVar[tuple[str, ...]] = ("-timestamp",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["content_type", "object_id", "-timestamp"], name="idx_audit_object"),
            models.Index(fields=["action", "-timestamp"], name="idx_audit_action"),
            models.Index(fields=["user", "action", "-timestamp"], name="idx_audit_user_action"),
        )

    def __str__(self) -> str:
        return f"{self.action} on {self.content_type} {self.object_id} by {self.actor_type}"

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValidationError("Audit events are immutable once recorded")
        super().save(*args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any) -> tuple[int, dict[str, int]]:
        raise ValidationError("Audit events cannot be deleted")
