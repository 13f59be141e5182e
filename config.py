"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # CSRF (JSON clients send X-CSRFToken)
    WTF_CSRF_ENABLED = os.getenv('WTF_CSRF_ENABLED', 'true').lower() == 'true'

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'dailyfresh')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'dailyfresh')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'dailyfresh')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Store rules (amounts in major currency units)
    CURRENCY = os.getenv('CURRENCY', 'INR')
    DEFAULT_TAX_RATE = os.getenv('DEFAULT_TAX_RATE', '18')  # percent, split CGST/SGST
    TAX_COMPONENT_NAMES = ('CGST', 'SGST')
    FREE_DELIVERY_THRESHOLD = os.getenv('FREE_DELIVERY_THRESHOLD', '500')
    STANDARD_DELIVERY_CHARGE = os.getenv('STANDARD_DELIVERY_CHARGE', '25')
    EXPRESS_DELIVERY_CHARGE = os.getenv('EXPRESS_DELIVERY_CHARGE', '50')
    MIN_ORDER_AMOUNT = os.getenv('MIN_ORDER_AMOUNT', '100')

    # Orders
    ORDER_NUMBER_PREFIX = os.getenv('ORDER_NUMBER_PREFIX', 'DF')
    HEADLESS_ORDER_GRACE_MINUTES = int(os.getenv('HEADLESS_ORDER_GRACE_MINUTES', '5'))

    # Payment gateway (external, opaque)
    PAYMENT_GATEWAY_URL = os.getenv('PAYMENT_GATEWAY_URL', 'http://payments:8080')
    PAYMENT_GATEWAY_KEY = os.getenv('PAYMENT_GATEWAY_KEY', '')
    PAYMENT_GATEWAY_TIMEOUT = int(os.getenv('PAYMENT_GATEWAY_TIMEOUT', '10'))

    # Redis Cache Configuration
    # Only delivery slot listings are cached; reservations always hit the database
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_SLOTS_TTL = int(os.getenv('CACHE_SLOTS_TTL', '30'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'dailyfresh')


class TestingConfig(Config):
    """Configuration used by the test-suite (SQLite, no CSRF, no Redis)."""

    TESTING = True
    DEBUG = False
    WTF_CSRF_ENABLED = False
    CACHE_ENABLED = False
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///dailyfresh-test.db')
    SQLALCHEMY_ECHO = False
    PAYMENT_GATEWAY_URL = 'http://gateway.test'
