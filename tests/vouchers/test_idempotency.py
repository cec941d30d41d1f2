"""
Tests for the idempotency registry.
"""

import uuid

from django.test import TestCase, override_settings

from apps.vouchers.errors import VoucherErrorCode
from apps.vouchers.idempotency_service import IdempotencyRegistry
from apps.vouchers.models import VoucherValidation
from tests.factories.vouchers import create_business, create_deal, create_voucher


class IdempotencyRegistryTests(TestCase):
    """Tests for IdempotencyRegistry.register."""

    def setUp(self):
        self.business = create_business()
        self.deal = create_deal(self.business)

    def test_first_registration_creates_record(self):
        registration = IdempotencyRegistry.register("ext-1", self.business.pk, self.deal.pk).unwrap()
        self.assertTrue(registration.created)
        self.assertIsNone(registration.voucher_ref)
        self.assertEqual(VoucherValidation.objects.filter(reference="ext-1").count(), 1)

    def test_second_registration_returns_existing(self):
        IdempotencyRegistry.register("ext-1", self.business.pk, self.deal.pk)
        again = IdempotencyRegistry.register("ext-1", str(self.business.pk), str(self.deal.pk)).unwrap()
        self.assertFalse(again.created)
        self.assertEqual(VoucherValidation.objects.count(), 1)

    def test_bound_record_returns_voucher_token(self):
        voucher = create_voucher(self.deal)
        VoucherValidation.objects.create(reference="ext-2", business=self.business, deal=self.deal, voucher=voucher)
        registration = IdempotencyRegistry.register("ext-2", self.business.pk, self.deal.pk).unwrap()
        self.assertFalse(registration.created)
        self.assertEqual(registration.voucher_ref, voucher.token)

    def test_reference_is_stripped(self):
        IdempotencyRegistry.register("  ext-3  ", self.business.pk, self.deal.pk)
        self.assertTrue(VoucherValidation.objects.filter(reference="ext-3").exists())

    def test_deal_of_other_business_is_not_found(self):
        other = create_business()
        result = IdempotencyRegistry.register("ext-4", other.pk, self.deal.pk)
        self.assertEqual(result.unwrap_err().code, VoucherErrorCode.VALIDATION_NOT_FOUND)
        self.assertFalse(VoucherValidation.objects.exists())

    def test_unknown_deal_is_not_found(self):
        result = IdempotencyRegistry.register("ext-5", self.business.pk, uuid.uuid4())
        self.assertEqual(result.unwrap_err().code, VoucherErrorCode.VALIDATION_NOT_FOUND)

    def test_reference_reused_for_other_deal_is_not_found(self):
        IdempotencyRegistry.register("ext-6", self.business.pk, self.deal.pk)
        other_deal = create_deal(self.business, title="Other")
        result = IdempotencyRegistry.register("ext-6", self.business.pk, other_deal.pk)
        self.assertEqual(result.unwrap_err().code, VoucherErrorCode.VALIDATION_NOT_FOUND)

    def test_invalid_references(self):
        for reference in ("", "   ", None, 42, "x" * 501, "ext\x001"):
            with self.subTest(reference=reference):
                result = IdempotencyRegistry.register(reference, self.business.pk, self.deal.pk)
                self.assertEqual(result.unwrap_err().code, VoucherErrorCode.INVALID_INPUT)

    @override_settings(VOUCHER_REFERENCE_MAX_LENGTH=2000)
    def test_reference_longer_than_column_is_rejected(self):
        result = IdempotencyRegistry.register("x" * 501, self.business.pk, self.deal.pk)
        self.assertEqual(result.unwrap_err().code, VoucherErrorCode.INVALID_INPUT)
        self.assertFalse(VoucherValidation.objects.exists())

    def test_malformed_deal_id(self):
        result = IdempotencyRegistry.register("ext-7", self.business.pk, "not-a-uuid")
        self.assertEqual(result.unwrap_err().code, VoucherErrorCode.INVALID_INPUT)
