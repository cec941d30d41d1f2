# ===============================================================================
# TEST FACTORIES FOR DEALS & VOUCHERS
# ===============================================================================

from datetime import datetime, timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from apps.deals.models import Business, Deal
from apps.vouchers.models import Purchase, Voucher

User = get_user_model()


def create_user(username: str = 'customer') -> User:
    """Create a plain user (customer or vendor identity)."""
    return User.objects.create_user(username=username, email=f'{username}@example.com', password='testpass123')


def create_business(owner=None, name: str = 'Corner Bakery', monthly_voucher_allowance: int | None = None) -> Business:
    """Create a business, owned by a fresh vendor user unless one is given."""
    if owner is None:
        owner = create_user(f'vendor_{Business.objects.count() + 1}')
    return Business.objects.create(name=name, owner=owner, monthly_voucher_allowance=monthly_voucher_allowance)


def create_deal(  # noqa: PLR0913
    business: Business,
    title: str = 'Two coffees for one',
    status: str = Deal.STATUS_ACTIVE,
    original_value: Decimal = Decimal('19.98'),
    deal_price: Decimal = Decimal('9.99'),
    redemption_window_end: datetime | None = None,
    voucher_quantity_limit: int | None = None,
) -> Deal:
    """Create a deal with sensible defaults (active, 9.99 for 19.98)."""
    return Deal.objects.create(
        business=business,
        title=title,
        status=status,
        original_value=original_value,
        deal_price=deal_price,
        redemption_window_start=timezone.now() - timedelta(days=1),
        redemption_window_end=redemption_window_end,
        voucher_quantity_limit=voucher_quantity_limit,
    )


def create_voucher(
    deal: Deal,
    status: str = Voucher.STATUS_ISSUED,
    expires_at: datetime | None = None,
    issued_at: datetime | None = None,
) -> Voucher:
    """Create a voucher row directly, bypassing the issuance engine."""
    return Voucher.objects.create(
        deal=deal,
        business=deal.business,
        token=Voucher.generate_token(),
        status=status,
        issued_at=issued_at or timezone.now(),
        expires_at=expires_at,
    )


def create_purchase(customer, voucher: Voucher, payment_reference: str = 'pay-fixture') -> Purchase:
    """Create a completed purchase row directly."""
    return Purchase.objects.create(
        customer=customer,
        deal=voucher.deal,
        voucher=voucher,
        amount_paid=voucher.deal.deal_price,
        payment_reference=payment_reference,
    )
