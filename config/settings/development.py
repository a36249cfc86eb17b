"""
Development settings - never use in production.
"""
from .base import *  # noqa

DEBUG = True

ALLOWED_HOSTS = ['*']

# SQLite for local dev (no setup needed)
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

# Show emails in console during development
EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'

# CORS - allow all origins in dev
CORS_ALLOW_ALL_ORIGINS = True

# Run Celery tasks inline so no broker is needed locally
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = False

# PayPal sandbox unless explicitly overridden in .env
PAYPAL_API_BASE = os.environ.get('PAYPAL_API_BASE', 'https://api-m.sandbox.paypal.com')

