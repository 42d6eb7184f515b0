"""Configuration module for Flask application."""
import os
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Preferred URL scheme (for url_for with _external=True)
    PREFERRED_URL_SCHEME = os.getenv('PREFERRED_URL_SCHEME', 'http')
    APP_URL = os.getenv('APP_URL', 'http://localhost:5000').rstrip('/')

    # Database - Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'storefront')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'storefront')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'storefront')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', '0') == '1'

    # Shop
    SHOP_NAME = os.getenv('SHOP_NAME', "L'InviThé Gourmand")
    SHOP_ADDRESS = os.getenv('SHOP_ADDRESS', "64, rue d'Alésia, 75014 Paris")
    ORDER_NUMBER_PREFIX = os.getenv('ORDER_NUMBER_PREFIX', 'IGR')
    CURRENCY = os.getenv('CURRENCY', 'EUR')
    FREE_SHIPPING_THRESHOLD = Decimal(os.getenv('FREE_SHIPPING_THRESHOLD', '50.00'))
    DELIVERY_FEE = Decimal(os.getenv('DELIVERY_FEE', '5.90'))
    LOW_STOCK_THRESHOLD = int(os.getenv('LOW_STOCK_THRESHOLD', '5'))

    # Promo codes: both default to the historical behaviour (discount frozen at
    # apply time, usage counter never incremented). See DESIGN.md.
    PROMO_REVALIDATE_AT_CHECKOUT = os.getenv('PROMO_REVALIDATE_AT_CHECKOUT', 'false').lower() == 'true'
    PROMO_COUNT_USES = os.getenv('PROMO_COUNT_USES', 'false').lower() == 'true'

    # Payment provider (Mercado Pago Checkout Pro)
    MP_ACCESS_TOKEN = os.getenv('MP_ACCESS_TOKEN')
    MP_SANDBOX = os.getenv('MP_SANDBOX', 'true').lower() == 'true'
    PAYMENT_WEBHOOK_SECRET = os.getenv('PAYMENT_WEBHOOK_SECRET')
    PAYMENT_SESSION_TTL_MINUTES = int(os.getenv('PAYMENT_SESSION_TTL_MINUTES', '30'))

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'localhost')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 465))
    MAIL_USE_TLS = os.getenv('SMTP_USE_TLS', 'false').lower() == 'true'
    MAIL_USE_SSL = os.getenv('SMTP_SECURE', 'true').lower() == 'true'
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASS') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = False
    ADMIN_EMAIL = os.getenv('ADMIN_EMAIL', 'admin@localhost')

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_CATALOG_TTL = int(os.getenv('CACHE_CATALOG_TTL', '60'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'storefront')


class TestConfig(Config):
    """Configuration used by the test suite."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite://')
    SQLALCHEMY_ECHO = False
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    CACHE_ENABLED = False
    PAYMENT_WEBHOOK_SECRET = 'test-webhook-secret'
    APP_URL = 'http://shop.test'
