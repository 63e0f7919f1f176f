from django.core.management.base import BaseCommand, CommandError

from core.integrity import check_ledger
from core.models import Shop
from core.store import load_aggregate


class Command(BaseCommand):
    help = "Check stock, invoice and purchase ledgers for consistency."

    def add_arguments(self, parser):
        parser.add_argument("--shop", help="Shop id to check. Defaults to every shop.")

    def handle(self, *args, **options):
        shops = Shop.objects.order_by("created_at")
        if options.get("shop"):
            shops = shops.filter(id=options["shop"])
            if not shops.exists():
                raise CommandError(f"Shop {options['shop']} does not exist.")

        failed = 0
        for shop in shops:
            violations, warnings = check_ledger(load_aggregate(shop))
            for message in warnings:
                self.stdout.write(self.style.WARNING(f"[{shop.name}] {message}"))
            for message in violations:
                self.stdout.write(self.style.ERROR(f"[{shop.name}] {message}"))
            if violations:
                failed += 1
            else:
                self.stdout.write(self.style.SUCCESS(f"[{shop.name}] ledger OK"))

        if failed:
            raise CommandError(f"{failed} shop(s) have ledger violations.")
