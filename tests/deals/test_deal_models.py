"""
Tests for the Business and Deal models.
"""

from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from apps.deals.models import Deal
from tests.factories.vouchers import create_business, create_deal


class DealModelTests(TestCase):
    """Tests for Deal."""

    def setUp(self):
        self.business = create_business(monthly_voucher_allowance=None)

    def test_unlimited_allowance(self):
        self.assertTrue(self.business.has_unlimited_allowance)

    def test_is_active(self):
        self.assertTrue(create_deal(self.business).is_active)
        self.assertFalse(create_deal(self.business, status=Deal.STATUS_INACTIVE).is_active)
        self.assertFalse(create_deal(self.business, status=Deal.STATUS_EXPIRED).is_active)

    def test_clean_rejects_price_above_value(self):
        deal = create_deal(self.business, original_value=Decimal("5.00"), deal_price=Decimal("9.99"))
        with self.assertRaises(ValidationError):
            deal.clean()

    def test_clean_rejects_inverted_window(self):
        deal = create_deal(self.business, redemption_window_end=timezone.now() - timedelta(days=2))
        with self.assertRaises(ValidationError):
            deal.clean()

    def test_mark_active_usage_touches_only_last_active_at(self):
        deal = create_deal(self.business)
        deal.title = "unsaved edit"
        deal.mark_active_usage()
        deal.refresh_from_db()
        self.assertIsNotNone(deal.last_active_at)
        self.assertEqual(deal.title, "Two coffees for one")
