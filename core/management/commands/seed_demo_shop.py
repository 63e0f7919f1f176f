from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from core.aggregate import AppData, PurchaseItem
from core.models import Shop, ShopDocument
from core.store import apply_command, load_aggregate
from inventory.services import add_model, commit_purchase
from sales.services import build_payment, commit_invoice

DEMO_MODELS = [
    ("Samsung", "Galaxy A15", Decimal("17500.00"), Decimal("19990.00")),
    ("Xiaomi", "Redmi Note 13", Decimal("21000.00"), Decimal("23999.00")),
    ("Apple", "iPhone 13", Decimal("72000.00"), Decimal("79500.00")),
]


class Command(BaseCommand):
    help = "Seed a demo mobile shop with a catalog, one purchase and one invoice."

    def add_arguments(self, parser):
        parser.add_argument("--username", default="demo")
        parser.add_argument("--password", default="demo12345")
        parser.add_argument("--shop-name", default="Demo Mobile Point")

    def handle(self, *args, **options):
        User = get_user_model()
        username = options["username"]

        user = User.objects.filter(username=username).select_related("shop").first()
        if user is not None and user.shop_id:
            self.stdout.write(self.style.WARNING(f"User {username} already owns shop {user.shop.name}; nothing to do."))
            return

        with transaction.atomic():
            shop = Shop.objects.create(
                name=options["shop_name"],
                address="House 12, Road 5, Dhanmondi, Dhaka",
                phone="01700000000",
                owner_username=username,
                prepared_by=username,
            )
            ShopDocument.objects.create(shop=shop, data=AppData.empty(shop.to_profile()).ledgers_document())
            if user is None:
                user = User.objects.create_user(username=username, password=options["password"], shop=shop)
            else:
                user.shop = shop
                user.save(update_fields=["shop"])

        models = []
        for brand, model_name, purchase_price, selling_price in DEMO_MODELS:
            _, model = apply_command(
                shop,
                add_model,
                brand=brand,
                model_name=model_name,
                purchase_price=purchase_price,
                selling_price=selling_price,
            )
            models.append(model)

        stamp = timezone.now().strftime("%H%M%S")
        items = [
            PurchaseItem(
                model_id=model.id,
                brand=model.brand,
                model_name=model.model_name,
                imeis=tuple(f"35{index}{position}{stamp}0000"[:15] for position in range(3)),
                cost_price=model.purchase_price,
                selling_price=model.selling_price,
            )
            for index, model in enumerate(models)
        ]
        _, purchase, _ = apply_command(
            shop,
            commit_purchase,
            items=items,
            supplier_name="Dhaka Mobile Wholesale",
            supplier_phone="01800000000",
            paid_amount=sum((item.line_total for item in items), Decimal("0")),
        )

        sold = items[0]
        _, invoice = apply_command(
            shop,
            commit_invoice,
            customer_name="Rahim Uddin",
            customer_phone="01900000000",
            items=[(sold.imeis[0], sold.selling_price)],
            paid_amount=sold.selling_price,
            payment=build_payment("bKash", amount=sold.selling_price, payment_phone="01900000000"),
        )

        data = load_aggregate(shop)
        self.stdout.write(
            self.style.SUCCESS(
                f"Seeded {shop.name} ({shop.id}): {len(data.models)} models, purchase {purchase.purchase_number}, "
                f"invoice {invoice.invoice_number}. Login with {username}."
            )
        )
