# Generated manually for Deals App - Businesses and deal offers

import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Business",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("name", models.CharField(max_length=200)),
                (
                    "monthly_voucher_allowance",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Vouchers this business may issue per calendar month (null = unlimited)",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "owner",
                    models.ForeignKey(
                        blank=True,
                        help_text="Vendor account that owns this business",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="owned_businesses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Business",
                "verbose_name_plural": "Businesses",
                "db_table": "deal_businesses",
                "ordering": ("name",),
            },
        ),
        migrations.CreateModel(
            name="Deal",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("inactive", "Inactive"),
                            ("active", "Active"),
                            ("expired", "Expired (Archived)"),
                        ],
                        db_index=True,
                        default="inactive",
                        max_length=20,
                    ),
                ),
                (
                    "original_value",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Regular price of what the deal offers",
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                    ),
                ),
                (
                    "deal_price",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Discounted price the customer pays",
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                    ),
                ),
                ("redemption_window_start", models.DateTimeField(blank=True, null=True)),
                (
                    "redemption_window_end",
                    models.DateTimeField(
                        blank=True,
                        help_text="Vouchers issued for this deal expire at this instant",
                        null=True,
                    ),
                ),
                (
                    "voucher_quantity_limit",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Maximum vouchers ever issued for this deal (null = no cap)",
                        null=True,
                    ),
                ),
                ("last_active_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="deals",
                        to="deals.business",
                    ),
                ),
            ],
            options={
                "verbose_name": "Deal",
                "verbose_name_plural": "Deals",
                "db_table": "deal_deals",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["business", "status"], name="idx_deal_business_status"),
                ],
            },
        ),
    ]
