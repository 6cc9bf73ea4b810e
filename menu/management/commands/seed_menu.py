from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from menu.models import Category, MenuItem

# --- MENU DATA ---
MENU_DATA = {
    "Pizzas": [
        ("Margherita", "Tomato sauce, mozzarella and fresh basil", "10.99", True),
        ("Pepperoni", "Tomato sauce, mozzarella and spicy pepperoni", "12.99", True),
        ("Quattro Formaggi", "Mozzarella, gorgonzola, parmesan and fontina", "13.99", False),
        ("Vegetariana", "Peppers, onions, mushrooms and olives", "12.49", False),
        ("Diavola", "Spicy salami, chili and mozzarella", "13.49", True),
    ],
    "Sides": [
        ("Garlic Bread", "Baked with garlic butter and herbs", "4.49", False),
        ("Chicken Wings", "Six wings with barbecue sauce", "6.99", False),
    ],
    "Drinks": [
        ("Cola", "330ml can", "1.99", False),
        ("Sparkling Water", "500ml bottle", "1.49", False),
    ],
    "Desserts": [
        ("Tiramisu", "Coffee-soaked ladyfingers and mascarpone", "5.49", False),
    ],
}


class Command(BaseCommand):
    help = "Seeds the menu with categories and items for development and demos."

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Deletes existing categories and menu items before seeding.',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write(self.style.WARNING("Clearing existing menu..."))
            MenuItem.objects.all().delete()
            Category.objects.all().delete()

        created = 0
        for sort_order, (category_name, items) in enumerate(MENU_DATA.items()):
            category, _ = Category.objects.get_or_create(
                name=category_name, defaults={'sort_order': sort_order}
            )
            for name, description, price, popular in items:
                _, was_created = MenuItem.objects.get_or_create(
                    category=category,
                    name=name,
                    defaults={'description': description, 'price': Decimal(price), 'is_popular': popular},
                )
                created += was_created

        self.stdout.write(self.style.SUCCESS(f"Menu seeded: {created} new items."))
