"""
Tests for the purchase assignment engine.
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import IntegrityError
from django.db.models import QuerySet
from django.test import TestCase
from django.utils import timezone

from apps.audit.models import AuditEvent
from apps.deals.models import Deal
from apps.vouchers.errors import VoucherErrorCode
from apps.vouchers.models import Purchase, Voucher
from apps.vouchers.purchase_service import PurchaseService
from tests.factories.vouchers import create_business, create_deal, create_purchase, create_user, create_voucher


class PurchaseServiceTests(TestCase):
    """Tests for PurchaseService.confirm_purchase."""

    def setUp(self):
        self.customer = create_user("customer")
        self.business = create_business()
        self.deal = create_deal(self.business, deal_price=Decimal("9.99"))
        self.voucher = create_voucher(self.deal)

    def confirm(self, payment_reference="pay-1", amount_paid=Decimal("9.99"), deal=None):
        return PurchaseService.confirm_purchase(
            self.customer.pk, (deal or self.deal).pk, payment_reference, amount_paid
        )

    def test_confirm_assigns_voucher(self):
        """Test that a matching payment assigns the available voucher."""
        receipt = self.confirm(amount_paid=9.99).unwrap()

        self.assertEqual(receipt.voucher.pk, self.voucher.pk)
        self.assertEqual(receipt.voucher.status, Voucher.STATUS_ASSIGNED)
        self.voucher.refresh_from_db()
        self.assertEqual(self.voucher.status, Voucher.STATUS_ASSIGNED)
        self.assertIsNotNone(self.voucher.assigned_at)

        purchase = Purchase.objects.get(payment_reference="pay-1")
        self.assertEqual(purchase.customer_id, self.customer.pk)
        self.assertEqual(purchase.deal_id, self.deal.pk)
        self.assertEqual(purchase.voucher_id, self.voucher.pk)
        self.assertEqual(purchase.amount_paid, Decimal("9.99"))
        self.assertEqual(purchase.payment_provider, "external")
        self.assertEqual(purchase.status, Purchase.STATUS_COMPLETED)

    def test_confirm_touches_deal_and_audits(self):
        self.confirm().unwrap()
        self.deal.refresh_from_db()
        self.assertIsNotNone(self.deal.last_active_at)
        event = AuditEvent.objects.get(action="voucher_assigned", object_id=str(self.voucher.pk))
        self.assertEqual(event.old_values, {"status": Voucher.STATUS_ISSUED})
        self.assertEqual(event.metadata["amount_paid"], "9.99")

    def test_amount_accepted_as_string(self):
        self.assertTrue(self.confirm(amount_paid="9.99").is_ok())

    def test_amount_rounded_to_cents(self):
        """Test that sub-cent noise rounds half-up before comparison."""
        self.assertTrue(self.confirm(amount_paid="9.9899").is_ok())

    def test_amount_mismatch(self):
        error = self.confirm(amount_paid="9.98").unwrap_err()
        self.assertEqual(error.code, VoucherErrorCode.AMOUNT_MISMATCH)
        self.assertEqual(error.details, {"expected": "9.99", "received": "9.98"})
        self.voucher.refresh_from_db()
        self.assertEqual(self.voucher.status, Voucher.STATUS_ISSUED)

    def test_inactive_deal(self):
        Deal.objects.filter(pk=self.deal.pk).update(status=Deal.STATUS_INACTIVE)
        self.assertEqual(self.confirm().unwrap_err().code, VoucherErrorCode.DEAL_NOT_ACTIVE)

    def test_no_voucher_available(self):
        Voucher.objects.filter(pk=self.voucher.pk).update(status=Voucher.STATUS_ASSIGNED)
        error = self.confirm().unwrap_err()
        self.assertEqual(error.code, VoucherErrorCode.NO_VOUCHER_AVAILABLE)
        self.assertEqual(error.http_status, 409)

    def test_expired_vouchers_are_not_available(self):
        Voucher.objects.filter(pk=self.voucher.pk).update(expires_at=timezone.now() - timedelta(minutes=1))
        self.assertEqual(self.confirm().unwrap_err().code, VoucherErrorCode.NO_VOUCHER_AVAILABLE)

    def test_payment_reference_is_single_use(self):
        """Test that the second purchase with the same reference fails."""
        create_voucher(self.deal)
        self.confirm(payment_reference="pay-1").unwrap()

        error = self.confirm(payment_reference="pay-1").unwrap_err()

        self.assertEqual(error.code, VoucherErrorCode.PAYMENT_ALREADY_USED)
        self.assertEqual(Purchase.objects.filter(payment_reference="pay-1").count(), 1)
        self.assertEqual(Voucher.objects.filter(deal=self.deal, status=Voucher.STATUS_ISSUED).count(), 1)

    def test_payment_reference_used_on_other_deal(self):
        other_deal = create_deal(self.business, title="Other")
        create_purchase(create_user("someone"), create_voucher(other_deal), payment_reference="pay-9")
        self.assertEqual(self.confirm(payment_reference="pay-9").unwrap_err().code, VoucherErrorCode.PAYMENT_ALREADY_USED)

    def test_unique_violation_on_payment_reference_maps_to_payment_already_used(self):
        """Test the database backstop when the pre-check misses a concurrent purchase."""
        create_purchase(create_user("racer"), create_voucher(self.deal), payment_reference="pay-race")

        # The pre-check runs before the racing purchase is visible
        with patch.object(PurchaseService, "_payment_reference_used", side_effect=[False, True]):
            error = self.confirm(payment_reference="pay-race").unwrap_err()

        self.assertEqual(error.code, VoucherErrorCode.PAYMENT_ALREADY_USED)
        self.assertEqual(Purchase.objects.filter(payment_reference="pay-race").count(), 1)
        self.voucher.refresh_from_db()
        self.assertEqual(self.voucher.status, Voucher.STATUS_ISSUED)

    def test_oldest_voucher_assigned_first(self):
        newer = create_voucher(self.deal)
        older = create_voucher(self.deal, issued_at=timezone.now() - timedelta(days=2))
        receipt = self.confirm().unwrap()
        self.assertEqual(receipt.voucher.pk, older.pk)
        newer.refresh_from_db()
        self.assertEqual(newer.status, Voucher.STATUS_ISSUED)

    def test_concurrently_claimed_candidate_is_skipped(self):
        """Test that a lost conditional update moves on to the next voucher."""
        second = create_voucher(self.deal, issued_at=timezone.now() + timedelta(seconds=1))
        claimed = []
        real_update = QuerySet.update

        def patched_update(qs, **kwargs):
            if qs.model is Voucher and kwargs.get("status") == Voucher.STATUS_ASSIGNED and not claimed:
                claimed.append(True)
                real_update(Voucher.objects.filter(pk=self.voucher.pk), status=Voucher.STATUS_ASSIGNED)
            return real_update(qs, **kwargs)

        with patch.object(QuerySet, "update", patched_update):
            receipt = self.confirm().unwrap()

        self.assertEqual(receipt.voucher.pk, second.pk)
        self.assertEqual(Purchase.objects.count(), 1)

    def test_failure_is_audited(self):
        self.confirm(amount_paid="1.00")
        event = AuditEvent.objects.get(action="purchase_failed")
        self.assertEqual(event.user_id, self.customer.pk)
        self.assertEqual(event.object_id, str(self.deal.pk))
        self.assertEqual(event.metadata["error_code"], "AMOUNT_MISMATCH")

    def test_invalid_input(self):
        cases = [
            {"payment_reference": ""},
            {"payment_reference": None},
            {"amount_paid": "abc"},
            {"amount_paid": "-1.00"},
            {"amount_paid": None},
            {"amount_paid": "1e30"},
            {"amount_paid": "1" * 29},
            {"amount_paid": Decimal("1E+100")},
            {"amount_paid": "100000000.00"},
        ]
        for overrides in cases:
            with self.subTest(**{k: str(v) for k, v in overrides.items()}):
                error = self.confirm(**overrides).unwrap_err()
                self.assertEqual(error.code, VoucherErrorCode.INVALID_INPUT)
        self.assertFalse(AuditEvent.objects.filter(action="purchase_failed").exists())

    def test_payment_provider_validation(self):
        for provider in (42, ["stripe"], "x" * 51, "str\x00ipe"):
            with self.subTest(provider=provider):
                error = PurchaseService.confirm_purchase(
                    self.customer.pk, self.deal.pk, "pay-1", "9.99", payment_provider=provider
                ).unwrap_err()
                self.assertEqual(error.code, VoucherErrorCode.INVALID_INPUT)
        self.assertFalse(Purchase.objects.exists())

    def test_blank_payment_provider_uses_default(self):
        receipt = PurchaseService.confirm_purchase(
            self.customer.pk, self.deal.pk, "pay-1", "9.99", payment_provider="  "
        ).unwrap()
        self.assertEqual(receipt.purchase.payment_provider, "external")

    def test_skip_locked_follows_queryset_alias(self):
        with patch("apps.vouchers.purchase_service.connections") as mock_connections:
            mock_connections.__getitem__.return_value.features.has_select_for_update_skip_locked = False
            self.confirm().unwrap()
        mock_connections.__getitem__.assert_called_with("default")

    def test_unknown_customer_or_deal(self):
        error = PurchaseService.confirm_purchase(999999, self.deal.pk, "pay-1", "9.99").unwrap_err()
        self.assertEqual(error.code, VoucherErrorCode.VALIDATION_NOT_FOUND)
        error = PurchaseService.confirm_purchase(self.customer.pk, uuid.uuid4(), "pay-1", "9.99").unwrap_err()
        self.assertEqual(error.code, VoucherErrorCode.VALIDATION_NOT_FOUND)

    def test_retryable_insert_conflict_exhausts_to_transaction_failed(self):
        with patch.object(Purchase.objects, "create", side_effect=IntegrityError("voucher link")):
            error = self.confirm(payment_reference="pay-x").unwrap_err()
        self.assertEqual(error.code, VoucherErrorCode.TRANSACTION_FAILED)
        self.assertEqual(error.http_status, 503)
        self.voucher.refresh_from_db()
        self.assertEqual(self.voucher.status, Voucher.STATUS_ISSUED)
