"""
Management command to seed the database with sample data.

Generates:
- Products sold by weight, priced per 100 g
- Regional stock rows in 50 g steps
- Demo customers with a delivery region on their profile

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
    python manage.py seed_data --products 40 --regions east west north
"""
import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from accounts.models import Profile, normalize_region
from inventory.models import Product, Stock

DEMO_PASSWORD = 'freshmarket'

CATALOG = {
    'fruits': [
        'Apples', 'Bananas', 'Pears', 'Strawberries', 'Blueberries',
        'Grapes', 'Cherries', 'Plums', 'Mangoes', 'Kiwis',
    ],
    'vegetables': [
        'Tomatoes', 'Cucumbers', 'Carrots', 'Potatoes', 'Onions',
        'Peppers', 'Zucchini', 'Broccoli', 'Spinach', 'Mushrooms',
    ],
    'cheese': [
        'Cheddar', 'Gouda', 'Brie', 'Parmesan', 'Feta', 'Mozzarella',
    ],
    'nuts': [
        'Almonds', 'Walnuts', 'Cashews', 'Hazelnuts', 'Pistachios',
    ],
    'deli': [
        'Smoked Ham', 'Salami', 'Roast Beef', 'Turkey Breast',
    ],
}

VARIETIES = ['Organic', 'Local', 'Premium', 'Farm', 'Seasonal', 'Heritage']


class Command(BaseCommand):
    help = 'Seed the database with sample products, regional stock and demo customers'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing catalog, stock and orders before seeding',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=30,
            help='Number of products to create (default: 30)',
        )
        parser.add_argument(
            '--regions',
            nargs='+',
            default=['east', 'west'],
            help='Regions to stock (default: east west)',
        )
        parser.add_argument(
            '--customers',
            type=int,
            default=2,
            help='Demo customers per region (default: 2)',
        )

    def handle(self, *args, **options):
        regions = sorted({normalize_region(r) for r in options['regions'] if normalize_region(r)})

        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            products = self._create_products(options['products'])
            self._create_stock(products, regions)
            self._create_customers(regions, options['customers'])

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear catalog, stock and orders. Users are kept."""
        from orders.models import Order, OrderItem, OrderNote

        OrderNote.objects.all().delete()
        OrderItem.objects.all().delete()
        Order.objects.all().delete()
        Stock.objects.all().delete()
        Product.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_products(self, count):
        """Create products with per-100g prices between $0.20 and $6.00."""
        names = [
            (category, base)
            for category, bases in CATALOG.items()
            for base in bases
        ]
        existing_names = set(Product.objects.values_list('name', flat=True))

        products = []
        self.stdout.write(f'Creating {count} products...')

        for i in range(count):
            category, base = names[i % len(names)]
            name = base if i < len(names) else f"{random.choice(VARIETIES)} {base}"
            if name in existing_names:
                name = f"{name} #{i + 1}"
            existing_names.add(name)

            cents = random.randint(20, 600)
            products.append(Product(
                name=name,
                description=random.choice([
                    f"Fresh {base.lower()}, sold by weight.",
                    f"{category.title()} picked for this week's deliveries.",
                    "",
                ]),
                category=category,
                price_per_100g=Decimal(cents) / 100,
                is_active=random.random() > 0.05,
            ))

        created = Product.objects.bulk_create(products)
        self.stdout.write(self.style.SUCCESS(f'Created {len(created)} products'))
        return list(Product.objects.filter(name__in=[p.name for p in created]))

    def _create_stock(self, products, regions):
        """Each region carries 70-100% of the catalog, quantities in 50 g steps."""
        stock_rows = []

        self.stdout.write(f'Creating stock for {len(regions)} regions...')

        for region in regions:
            carried = random.sample(
                products,
                k=int(len(products) * random.uniform(0.7, 1.0))
            )
            for product in carried:
                stock_rows.append(Stock(
                    product=product,
                    region=region,
                    quantity_grams=random.randint(0, 200) * 50,
                ))

        # bulk_create skips save(), regions are already normalized
        Stock.objects.bulk_create(stock_rows, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {len(stock_rows)} stock rows'))

    def _create_customers(self, regions, per_region):
        User = get_user_model()
        created = 0

        for region in regions:
            for n in range(1, per_region + 1):
                username = f"{region}_customer{n}"
                user, is_new = User.objects.get_or_create(
                    username=username,
                    defaults={'email': f"{username}@example.com"},
                )
                if is_new:
                    user.set_password(DEMO_PASSWORD)
                    user.save()
                    created += 1
                Profile.objects.update_or_create(user=user, defaults={'region': region})

        self.stdout.write(self.style.SUCCESS(
            f'Created {created} demo customers (password: {DEMO_PASSWORD})'
        ))
