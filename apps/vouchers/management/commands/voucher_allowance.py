"""
Show the monthly voucher allowance window of a business.
"""

from typing import Any

from django.core.management.base import BaseCommand, CommandError, CommandParser
from django.utils import timezone

from apps.vouchers.allowance_service import month_window
from apps.vouchers.services import VoucherLifecycleService


class Command(BaseCommand):
    help = "Show how many vouchers a business has issued this month against its allowance"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument("business_id", help="Business UUID")
        parser.add_argument(
            "--requested",
            type=int,
            default=1,
            help="Number of vouchers the business wants to issue (default 1)",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        result = VoucherLifecycleService.check_allowance(options["business_id"], options["requested"])
        if result.is_err():
            error = result.unwrap_err()
            raise CommandError(f"{error.code}: {error.message}")

        check = result.unwrap()
        start, end = month_window(timezone.now())
        self.stdout.write(f"Window: {start:%Y-%m-%d %H:%M %Z} -> {end:%Y-%m-%d %H:%M %Z}")
        self.stdout.write(f"Issued this month: {check.current_month_issued}")
        if check.monthly_allowance is None:
            self.stdout.write("Monthly allowance: unlimited")
        else:
            self.stdout.write(f"Monthly allowance: {check.monthly_allowance}")
            self.stdout.write(f"Remaining: {check.remaining}")

        if check.allowed:
            self.stdout.write(self.style.SUCCESS(f"✅ {options['requested']} more voucher(s) allowed"))
        else:
            self.stdout.write(self.style.WARNING(f"⚠️ {check.message}"))
