# Generated manually for Audit App - Voucher lifecycle trail

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("contenttypes", "0002_remove_content_type_name"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="AuditEvent",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("timestamp", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "actor_type",
                    models.CharField(
                        choices=[
                            ("system", "System"),
                            ("vendor", "Vendor"),
                            ("customer", "Customer"),
                            ("admin", "Admin"),
                        ],
                        default="system",
                        max_length=20,
                    ),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("voucher_issued", "Voucher Issued"),
                            ("voucher_assigned", "Voucher Assigned To Purchase"),
                            ("voucher_redeemed", "Voucher Redeemed"),
                            ("purchase_failed", "Purchase Failed"),
                            ("redemption_failed", "Redemption Failed"),
                            ("purchase_review_flagged", "Purchase Flagged For Review"),
                        ],
                        db_index=True,
                        max_length=40,
                    ),
                ),
                ("object_id", models.CharField(db_index=True, max_length=36)),
                ("old_values", models.JSONField(blank=True, default=dict)),
                ("new_values", models.JSONField(blank=True, default=dict)),
                ("description", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "content_type",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        to="contenttypes.contenttype",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "audit_event",
                "ordering": ("-timestamp",),
                "indexes": [
                    models.Index(fields=["content_type", "object_id", "-timestamp"], name="idx_audit_object"),
                    models.Index(fields=["action", "-timestamp"], name="idx_audit_action"),
                    models.Index(fields=["user", "action", "-timestamp"], name="idx_audit_user_action"),
                ],
            },
        ),
    ]
