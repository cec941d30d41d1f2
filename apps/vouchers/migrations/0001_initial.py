# Generated manually for Vouchers App - Voucher lifecycle tables

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("deals", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Voucher",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "token",
                    models.CharField(
                        help_text="Redemption token printed on the voucher", max_length=64, unique=True
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("ISSUED", "Issued"), ("ASSIGNED", "Assigned"), ("REDEEMED", "Redeemed")],
                        default="ISSUED",
                        max_length=20,
                    ),
                ),
                ("issued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("assigned_at", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("redeemed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="vouchers",
                        to="deals.business",
                    ),
                ),
                (
                    "deal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="vouchers",
                        to="deals.deal",
                    ),
                ),
            ],
            options={
                "verbose_name": "Voucher",
                "verbose_name_plural": "Vouchers",
                "db_table": "voucher_vouchers",
                "ordering": ("-issued_at",),
                "indexes": [
                    models.Index(fields=["deal", "status", "issued_at"], name="idx_voucher_deal_status"),
                    models.Index(fields=["business", "issued_at"], name="idx_voucher_business_issued"),
                ],
            },
        ),
        migrations.CreateModel(
            name="VoucherValidation",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("reference", models.CharField(max_length=500, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="voucher_validations",
                        to="deals.business",
                    ),
                ),
                (
                    "deal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="voucher_validations",
                        to="deals.deal",
                    ),
                ),
                (
                    "voucher",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="validation",
                        to="vouchers.voucher",
                    ),
                ),
            ],
            options={
                "verbose_name": "Voucher Validation",
                "verbose_name_plural": "Voucher Validations",
                "db_table": "voucher_validations",
            },
        ),
        migrations.CreateModel(
            name="Purchase",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("amount_paid", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "payment_reference",
                    models.CharField(
                        help_text="Opaque payment-provider reference, consumed by exactly one purchase",
                        max_length=255,
                        unique=True,
                    ),
                ),
                ("payment_provider", models.CharField(default="external", max_length=50)),
                (
                    "status",
                    models.CharField(
                        choices=[("COMPLETED", "Completed")], default="COMPLETED", max_length=20
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="voucher_purchases",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "deal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchases",
                        to="deals.deal",
                    ),
                ),
                (
                    "voucher",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase",
                        to="vouchers.voucher",
                    ),
                ),
            ],
            options={
                "verbose_name": "Purchase",
                "verbose_name_plural": "Purchases",
                "db_table": "voucher_purchases",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["customer", "created_at"], name="idx_purchase_customer"),
                    models.Index(fields=["deal", "created_at"], name="idx_purchase_deal"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Redemption",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("redeemed_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("original_value_snapshot", models.DecimalField(decimal_places=2, max_digits=10)),
                ("deal_price_snapshot", models.DecimalField(decimal_places=2, max_digits=10)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redemptions",
                        to="deals.business",
                    ),
                ),
                (
                    "deal",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redemptions",
                        to="deals.deal",
                    ),
                ),
                (
                    "vendor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="voucher_redemptions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "voucher",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="redemption",
                        to="vouchers.voucher",
                    ),
                ),
            ],
            options={
                "verbose_name": "Redemption",
                "verbose_name_plural": "Redemptions",
                "db_table": "voucher_redemptions",
                "ordering": ("-redeemed_at",),
            },
        ),
        migrations.CreateModel(
            name="PurchaseReviewTask",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("USER_VELOCITY", "User Purchase Velocity"),
                            ("DEAL_VELOCITY", "Deal Purchase Velocity"),
                            ("FAILED_PAYMENTS", "Repeated Failed Payments"),
                        ],
                        max_length=30,
                    ),
                ),
                ("threshold", models.PositiveIntegerField()),
                ("actual_value", models.PositiveIntegerField()),
                ("resolved", models.BooleanField(default=False)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "deal",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="review_tasks",
                        to="deals.deal",
                    ),
                ),
                (
                    "resolved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="resolved_review_tasks",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="purchase_review_tasks",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Purchase Review Task",
                "verbose_name_plural": "Purchase Review Tasks",
                "db_table": "voucher_purchase_review_tasks",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["resolved", "-created_at"], name="idx_review_task_pending"),
                ],
            },
        ),
    ]
