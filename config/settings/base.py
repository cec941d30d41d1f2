"""
Django settings for DealVault - Base Configuration
Voucher lifecycle engine for the local-business deal marketplace.
"""

import os
from pathlib import Path
from typing import Any

# ===============================================================================
# CORE DJANGO SETTINGS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Application definition
DJANGO_APPS: list[str] = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
]

THIRD_PARTY_APPS: list[str] = [
    'django_q',  # Async task processing
]

LOCAL_APPS: list[str] = [
    'apps.common',
    'apps.audit',
    'apps.deals',
    'apps.vouchers',
]

INSTALLED_APPS: list[str] = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

# ===============================================================================
# DATABASE CONFIGURATION
# ===============================================================================

# Voucher issuance and redemption rely on row locks and SERIALIZABLE
# transactions, so PostgreSQL is the production engine.
DATABASES: dict[str, dict[str, Any]] = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.environ.get('DB_NAME', 'dealvault'),
        'USER': os.environ.get('DB_USER', 'dealvault'),
        'PASSWORD': os.environ.get('DB_PASSWORD', 'development_password'),
        'HOST': os.environ.get('DB_HOST', 'localhost'),
        'PORT': os.environ.get('DB_PORT', '5432'),
        'CONN_MAX_AGE': 60,
        'OPTIONS': {
            'application_name': 'dealvault',
        },
    }
}

# ===============================================================================
# INTERNATIONALIZATION & LOCALIZATION
# ===============================================================================

LANGUAGE_CODE = 'en-us'
# Allowance windows are calendar months in this zone
TIME_ZONE = os.environ.get('DEALVAULT_TIME_ZONE', 'America/New_York')
USE_I18N = True
USE_TZ = True

# ===============================================================================
# VOUCHER ENGINE CONFIGURATION
# ===============================================================================

# Whole-transaction retries on serialization failures and deadlocks
VOUCHER_TRANSACTION_MAX_RETRIES = int(os.environ.get('VOUCHER_TRANSACTION_MAX_RETRIES', '3'))
VOUCHER_TRANSACTION_RETRY_BACKOFF_MS = int(os.environ.get('VOUCHER_TRANSACTION_RETRY_BACKOFF_MS', '50'))

# Candidate vouchers tried per purchase before giving up on a contended pool
VOUCHER_PURCHASE_MAX_SELECTION_ATTEMPTS = 5

# Idempotency references are caller supplied; cap their size
VOUCHER_REFERENCE_MAX_LENGTH = 500

# Fixed-point quantum used when comparing amounts paid against deal prices
VOUCHER_MONEY_QUANTUM = '0.01'

# Purchase monitoring thresholds (observation only, never enforcement)
VOUCHER_MONITORING_THRESHOLDS: dict[str, int] = {
    'max_purchases_per_user_per_hour': 10,
    'max_failed_payments_per_user_per_hour': 5,
    'max_purchases_per_deal_per_minute': 50,
}

# ===============================================================================
# DJANGO-Q2 ASYNC TASK PROCESSING
# ===============================================================================

# Post-purchase monitoring runs on the queue, outside the request
Q_CLUSTER_BASE: dict[str, Any] = {
    'name': 'dealvault-cluster',
    'timeout': 60,
    'retry': 120,
    'save_limit': 1000,  # Keep last 1000 task results
    'catch_up': False,  # Don't run missed scheduled tasks
    'orm': 'default',  # Database broker, no extra infrastructure
    'bulk': 10,
    'queue_limit': 100,
}

Q_CLUSTER: dict[str, Any] = {
    **Q_CLUSTER_BASE,
    'workers': 2,
    'recycle': 500,  # Restart workers after 500 tasks
    'sync': False,
}

# ===============================================================================
# DEFAULT AUTO FIELD
# ===============================================================================

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===============================================================================
# SECURITY SETTINGS (Base - override in prod.py)
# ===============================================================================

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY')
if not SECRET_KEY:
    # Development fallback - never use this in production
    import warnings
    warnings.warn(
        "SECURITY WARNING: Using default SECRET_KEY. "
        "Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2
    )
    SECRET_KEY = 'django-insecure-dev-key-only-change-in-production-or-tests'  # noqa: S105


def validate_production_secret_key() -> None:
    """Validate SECRET_KEY meets production security requirements"""
    if SECRET_KEY and SECRET_KEY.startswith('django-insecure-'):
        raise ValueError(
            "CRITICAL SECURITY ERROR: Cannot use insecure SECRET_KEY in production! "
            "Generate a secure key: python -c 'from django.core.management.utils import get_random_secret_key; print(get_random_secret_key())'"
        )

# ===============================================================================
# LOGGING CONFIGURATION
# ===============================================================================

LOGGING: dict[str, Any] = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {name} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
