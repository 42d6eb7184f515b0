"""
Flask CLI commands.

Commands:
- flask create-admin: Create a new back-office admin
- flask cancel-stale-orders: Cancel pending orders past the payment expiry
- flask seed-catalog: Create tables and load a starter catalog
"""

import click
import re
from datetime import timedelta
from decimal import Decimal

from storefront.database import db_session, create_all
from storefront.models import AdminUser, Category, Product, PromoCode, DiscountType
from storefront.services import fulfillment_service

EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

SEED_CATEGORIES = [
    ('Thés', 'thes', 1),
    ('Macarons', 'macarons', 2),
    ('Pâtisseries', 'patisseries', 3),
]

SEED_PRODUCTS = [
    # category slug, name, slug, price, promo price, stock
    ('thes', 'Thé vert Sencha', 'the-vert-sencha', '12.50', None, 40),
    ('thes', 'Earl Grey impérial', 'earl-grey-imperial', '10.90', '9.50', 35),
    ('macarons', 'Coffret 6 macarons', 'coffret-6-macarons', '15.00', None, 20),
    ('macarons', 'Coffret 12 macarons', 'coffret-12-macarons', '27.00', None, 12),
    ('patisseries', 'Tarte au citron', 'tarte-au-citron', '4.80', None, 15),
    ('patisseries', 'Paris-Brest', 'paris-brest', '5.50', None, 10),
]


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--name', default=None, help='Display name')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
    def create_admin(email, name, password):
        """Create a new admin user for the back-office."""
        email = email.strip().lower()

        if not re.match(EMAIL_PATTERN, email):
            click.echo(click.style('Invalid email. Use the format user@example.com', fg='red'))
            return

        if len(password) < 8:
            click.echo(click.style('The password must be at least 8 characters long.', fg='red'))
            return

        if db_session.query(AdminUser).filter_by(email=email).first():
            click.echo(click.style(f'An admin already exists with email: {email}', fg='red'))
            return

        try:
            admin = AdminUser(email=email, name=name)
            admin.set_password(password)

            db_session.add(admin)
            db_session.commit()

            click.echo(click.style('\nAdmin created.', fg='green', bold=True))
            click.echo(f'   Email: {email}')
            click.echo(f'   ID: {admin.id}')

        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Error creating admin: {str(e)}', fg='red'))

    @app.cli.command('cancel-stale-orders')
    @click.option('--minutes', type=int, default=None,
                  help='Age in minutes (defaults to PAYMENT_SESSION_TTL_MINUTES)')
    def cancel_stale_orders(minutes):
        """Cancel pending orders whose payment session has expired."""
        older_than = timedelta(minutes=minutes) if minutes is not None else None
        count = fulfillment_service.cancel_stale_pending_orders(db_session, older_than=older_than)
        click.echo(f'{count} pending order(s) cancelled.')

    @app.cli.command('seed-catalog')
    def seed_catalog():
        """Create tables and insert the starter catalog (idempotent)."""
        create_all()

        categories = {}
        for name, slug, order in SEED_CATEGORIES:
            category = db_session.query(Category).filter_by(slug=slug).first()
            if not category:
                category = Category(name=name, slug=slug, display_order=order)
                db_session.add(category)
            categories[slug] = category
        db_session.flush()

        created = 0
        for category_slug, name, slug, price, promo_price, stock in SEED_PRODUCTS:
            if db_session.query(Product).filter_by(slug=slug).first():
                continue
            db_session.add(Product(
                category_id=categories[category_slug].id,
                name=name,
                slug=slug,
                price=Decimal(price),
                promo_price=Decimal(promo_price) if promo_price else None,
                stock=stock,
                images=[],
            ))
            created += 1

        if not db_session.query(PromoCode).filter_by(code='BIENVENUE10').first():
            db_session.add(PromoCode(
                code='BIENVENUE10',
                discount_type=DiscountType.PERCENTAGE,
                discount_value=Decimal('10'),
                min_order_amount=Decimal('15.00'),
            ))

        db_session.commit()
        click.echo(click.style(f'Catalog seeded ({created} new product(s)).', fg='green'))
