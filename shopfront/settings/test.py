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

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
EMAIL_FAIL_SILENTLY = False

APP_URL = 'https://shop.example.com'
PAYMONGO_BASE_URL = 'https://api.paymongo.test/v1'
PAYMONGO_SECRET_KEY = 'sk_test_key'
PAYMONGO_WEBHOOK_SECRET = 'whsk_test_secret'
JWT_SECRET = 'test-jwt-secret-with-at-least-32-bytes!!'
