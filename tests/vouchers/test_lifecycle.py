"""
End-to-end tests of the voucher lifecycle through VoucherLifecycleService.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.test import TestCase
from django.utils import timezone

from apps.audit.models import AuditEvent
from apps.audit.services import AuditService
from apps.vouchers.errors import VoucherErrorCode
from apps.vouchers.models import Purchase, Redemption, Voucher
from apps.vouchers.services import VoucherLifecycleService
from tests.factories.vouchers import create_business, create_deal, create_user

STATUS_RANK = {Voucher.STATUS_ISSUED: 0, Voucher.STATUS_ASSIGNED: 1, Voucher.STATUS_REDEEMED: 2}


class VoucherLifecycleTests(TestCase):
    """Issue -> confirm purchase -> redeem."""

    def setUp(self):
        self.customer = create_user("customer")
        self.vendor = create_user("vendor")
        self.business = create_business(owner=self.vendor)
        self.deal = create_deal(self.business, redemption_window_end=timezone.now() + timedelta(days=30))

    def test_full_lifecycle(self):
        voucher = VoucherLifecycleService.issue("ext-1", self.deal.pk).unwrap()

        receipt = VoucherLifecycleService.confirm_purchase(
            self.customer.pk, self.deal.pk, "pay-1", Decimal("9.99")
        ).unwrap()
        self.assertEqual(receipt.voucher.pk, voucher.pk)

        redemption = VoucherLifecycleService.redeem(voucher.token, self.vendor.pk).unwrap()
        self.assertEqual(redemption.voucher_id, voucher.pk)

        voucher.refresh_from_db()
        self.assertEqual(voucher.status, Voucher.STATUS_REDEEMED)
        self.assertEqual(Purchase.objects.get().payment_reference, "pay-1")
        self.assertEqual(Redemption.objects.get().deal_price_snapshot, Decimal("9.99"))

    def test_status_only_moves_forward(self):
        """Test that the audit trail of a voucher never moves its status backwards."""
        voucher = VoucherLifecycleService.issue("ext-1", self.deal.pk).unwrap()
        VoucherLifecycleService.issue("ext-1", self.deal.pk)
        VoucherLifecycleService.confirm_purchase(self.customer.pk, self.deal.pk, "pay-1", "9.99")
        VoucherLifecycleService.confirm_purchase(self.customer.pk, self.deal.pk, "pay-1", "9.99")
        VoucherLifecycleService.redeem(voucher.token, self.vendor.pk)
        VoucherLifecycleService.redeem(voucher.token, self.vendor.pk)

        statuses = [
            event.new_values["status"]
            for event in AuditService.events_for(voucher)
            if event.new_values.get("status")
        ]
        self.assertEqual(statuses, [Voucher.STATUS_ISSUED, Voucher.STATUS_ASSIGNED, Voucher.STATUS_REDEEMED])
        ranks = [STATUS_RANK[s] for s in statuses]
        self.assertEqual(ranks, sorted(ranks))

    def test_double_spend_scenarios(self):
        VoucherLifecycleService.issue("ext-1", self.deal.pk).unwrap()
        VoucherLifecycleService.issue("ext-2", self.deal.pk).unwrap()

        first = VoucherLifecycleService.confirm_purchase(self.customer.pk, self.deal.pk, "pay-1", "9.99").unwrap()
        retry = VoucherLifecycleService.confirm_purchase(self.customer.pk, self.deal.pk, "pay-1", "9.99")
        self.assertEqual(retry.unwrap_err().code, VoucherErrorCode.PAYMENT_ALREADY_USED)

        VoucherLifecycleService.redeem(first.voucher.token, self.vendor.pk).unwrap()
        again = VoucherLifecycleService.redeem(first.voucher.token, self.vendor.pk)
        self.assertEqual(again.unwrap_err().code, VoucherErrorCode.ALREADY_REDEEMED)

        self.assertEqual(Purchase.objects.count(), 1)
        self.assertEqual(Redemption.objects.count(), 1)
        self.assertEqual(Voucher.objects.filter(status=Voucher.STATUS_ISSUED).count(), 1)

    def test_allowance_blocks_issuance(self):
        capped = create_business(monthly_voucher_allowance=1)
        deal = create_deal(capped)
        VoucherLifecycleService.issue("cap-1", deal.pk).unwrap()

        check = VoucherLifecycleService.check_allowance(capped.pk).unwrap()
        self.assertFalse(check.allowed)
        self.assertEqual(check.remaining, 0)

        error = VoucherLifecycleService.issue("cap-2", deal.pk).unwrap_err()
        self.assertEqual(error.code, VoucherErrorCode.ALLOWANCE_EXCEEDED)
        self.assertEqual(error.http_status, 429)

    def test_foreign_vendor_cannot_redeem(self):
        voucher = VoucherLifecycleService.issue("ext-1", self.deal.pk).unwrap()
        VoucherLifecycleService.confirm_purchase(self.customer.pk, self.deal.pk, "pay-1", "9.99").unwrap()

        error = VoucherLifecycleService.redeem(voucher.token, create_user("intruder").pk).unwrap_err()

        self.assertEqual(error.code, VoucherErrorCode.OWNERSHIP_MISMATCH)
        voucher.refresh_from_db()
        self.assertEqual(voucher.status, Voucher.STATUS_ASSIGNED)

    def test_audit_trail_records_each_step(self):
        voucher = VoucherLifecycleService.issue("ext-1", self.deal.pk).unwrap()
        VoucherLifecycleService.confirm_purchase(self.customer.pk, self.deal.pk, "pay-1", "9.99")
        VoucherLifecycleService.redeem(voucher.token, self.vendor.pk)

        actions = list(
            AuditEvent.objects.filter(object_id=str(voucher.pk)).order_by("timestamp").values_list("action", flat=True)
        )
        self.assertEqual(actions, ["voucher_issued", "voucher_assigned", "voucher_redeemed"])


@pytest.mark.django_db
def test_issue_then_purchase_with_fixtures(customer, deal):
    """Test the issue and purchase path with the shared pytest fixtures."""
    voucher = VoucherLifecycleService.issue("fixture-1", deal.pk).unwrap()
    receipt = VoucherLifecycleService.confirm_purchase(customer.pk, deal.pk, "pay-fixture-1", "9.99").unwrap()

    assert receipt.voucher.pk == voucher.pk
    assert receipt.purchase.customer == customer


@pytest.mark.django_db
def test_vendor_redeems_with_fixtures(business, deal):
    voucher = VoucherLifecycleService.issue("fixture-2", deal.pk).unwrap()

    redemption = VoucherLifecycleService.redeem(voucher.token, business.owner_id).unwrap()

    assert redemption.business_id == business.pk
    voucher.refresh_from_db()
    assert voucher.status == Voucher.STATUS_REDEEMED
