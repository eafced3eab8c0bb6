from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
PAYMENTS_ADMIN_EMAILS = 'ops@example.com'

PAYSTACK = {
    **PAYSTACK,
    'TEST_MODE': True,
    'SECRET_KEY': 'sk_test_dummy',
    'LIVE_SECRET_KEY': '',
    'BASE_URL': 'https://api.paystack.test',
    'CALLBACK_URL': 'https://shop.example.com/payments/callback',
    'CURRENCY': 'NGN',
    'VERIFY_ATTEMPTS': 3,
    'VERIFY_BACKOFF': 0,
    'WEBHOOK_SECRET': '',
}
