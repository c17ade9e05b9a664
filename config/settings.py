"""
Django settings for the project.

Single-file settings (no split base/development/production modules).
"""

import os
from pathlib import Path

import environ
from django.core.exceptions import ImproperlyConfigured


os.environ.setdefault('DJANGO_ENV', 'development')

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    CSRF_TRUSTED_ORIGINS=(list, []),
    SECRET_KEY=(str, ''),
    DATABASE_URL=(str, 'sqlite:///db.sqlite3'),
    DOCUMENT_STORE_BACKEND=(str, 'model'),
    DOCUMENT_STORE_DATABASE=(str, 'storefront'),
    STRIPE_SECRET_KEY=(str, ''),
    STRIPE_PUBLIC_KEY=(str, ''),
    STRIPE_WEBHOOK_SECRET=(str, ''),
    FRONTEND_URL=(str, 'http://localhost:5173'),
    SITE_NAME=(str, 'Storefront'),
    DEFAULT_CURRENCY=(str, 'SEK'),
    DISCOUNT_CODE_PREFIX=(str, 'PEAK10'),
    DISCOUNT_CODE_VALID_DAYS=(int, 14),
    ABANDONED_CHECKOUT_FIRST_MINUTES=(int, 10),
    ABANDONED_CHECKOUT_SECOND_MINUTES=(int, 20),
    PAYMENT_FAILURE_EMAIL_MINUTES=(int, 3),
    ENABLE_PAYMENT_FAILURE_EMAIL=(bool, True),
    EMAIL_BACKEND=(str, 'django.core.mail.backends.console.EmailBackend'),
    EMAIL_HOST=(str, 'smtp.sendgrid.net'),
    EMAIL_PORT=(int, 587),
    EMAIL_HOST_USER=(str, ''),
    EMAIL_HOST_PASSWORD=(str, ''),
    EMAIL_USE_TLS=(bool, True),
    EMAIL_USE_SSL=(bool, False),
    DEFAULT_FROM_EMAIL=(str, ''),
    LOG_LEVEL=(str, 'INFO'),
)

BASE_DIR = Path(__file__).resolve().parent.parent
APPS_DIR = BASE_DIR / 'apps'

# Read .env file (if present)
environ.Env.read_env(BASE_DIR / '.env')

SECRET_KEY = env('SECRET_KEY') or 'django-insecure-CHANGE-THIS-IN-PRODUCTION-use-env'
DEBUG = env('DEBUG')
ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['localhost', '127.0.0.1'])
_raw_origins = env.list('CSRF_TRUSTED_ORIGINS', default=[])
# Strip whitespace; Django requires exact match (no trailing slash)
CSRF_TRUSTED_ORIGINS = [o.strip().rstrip('/') for o in _raw_origins if o.strip()]

DJANGO_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
]

LOCAL_APPS = [
    'apps.core',
    'apps.discounts',
    'apps.cart',
    'apps.orders',
    'apps.payments',
    'apps.checkouts',
    'apps.reviews',
]

INSTALLED_APPS = DJANGO_APPS + LOCAL_APPS

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'config.middleware.ApiExceptionMiddleware',
]

ROOT_URLCONF = 'config.urls'
WSGI_APPLICATION = 'config.wsgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

DATABASES = {
    'default': env.db('DATABASE_URL')
}

LANGUAGE_CODE = 'sv'
LANGUAGES = [
    ('sv', 'Svenska'),
    ('en', 'English'),
]
TIME_ZONE = 'Europe/Stockholm'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Document store ('model' = Django ORM, 'memory' = proceso local)
DOCUMENT_STORE_BACKEND = env('DOCUMENT_STORE_BACKEND')
DOCUMENT_STORE_DATABASE = env('DOCUMENT_STORE_DATABASE')

# Stripe
STRIPE_SECRET_KEY = env('STRIPE_SECRET_KEY')
STRIPE_PUBLIC_KEY = env('STRIPE_PUBLIC_KEY')
STRIPE_WEBHOOK_SECRET = env('STRIPE_WEBHOOK_SECRET')

FRONTEND_URL = env('FRONTEND_URL').rstrip('/')
SITE_NAME = env('SITE_NAME')
DEFAULT_CURRENCY = env('DEFAULT_CURRENCY').upper()

# Códigos de descuento de bienvenida (0 días = sin caducidad)
DISCOUNT_CODE_PREFIX = env('DISCOUNT_CODE_PREFIX').strip().upper()
DISCOUNT_CODE_VALID_DAYS = env.int('DISCOUNT_CODE_VALID_DAYS')

# Recordatorios (minutos de inactividad)
ABANDONED_CHECKOUT_FIRST_MINUTES = env.int('ABANDONED_CHECKOUT_FIRST_MINUTES')
ABANDONED_CHECKOUT_SECOND_MINUTES = env.int('ABANDONED_CHECKOUT_SECOND_MINUTES')
PAYMENT_FAILURE_EMAIL_MINUTES = env.int('PAYMENT_FAILURE_EMAIL_MINUTES')
ENABLE_PAYMENT_FAILURE_EMAIL = env.bool('ENABLE_PAYMENT_FAILURE_EMAIL')

EMAIL_BACKEND = env('EMAIL_BACKEND')
EMAIL_HOST = env('EMAIL_HOST')
EMAIL_PORT = env.int('EMAIL_PORT')
EMAIL_HOST_USER = env('EMAIL_HOST_USER')
EMAIL_HOST_PASSWORD = env('EMAIL_HOST_PASSWORD')
EMAIL_USE_TLS = env.bool('EMAIL_USE_TLS')
EMAIL_USE_SSL = env.bool('EMAIL_USE_SSL')
_default_from = env('DEFAULT_FROM_EMAIL') or EMAIL_HOST_USER or 'no-reply@localhost'
DEFAULT_FROM_EMAIL = _default_from
SERVER_EMAIL = _default_from

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'stderr': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['stderr'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {
            'handlers': ['stderr'],
            'level': 'WARNING',
            'propagate': False,
        },
        'django.request': {
            'handlers': ['stderr'],
            'level': 'ERROR',
            'propagate': False,
        },
        'apps': {
            'handlers': ['stderr'],
            'level': env('LOG_LEVEL').upper(),
            'propagate': False,
        },
        'config': {
            'handlers': ['stderr'],
            'level': env('LOG_LEVEL').upper(),
            'propagate': False,
        },
    },
}


def _is_placeholder_secret(secret):
    if not secret:
        return True
    lowered = secret.lower()
    return (
        lowered.startswith('django-insecure-')
        or len(secret) < 50
    )


# Environment-specific overrides
_django_env = (os.environ.get('DJANGO_ENV') or 'development').strip().lower()

if _django_env == 'development':
    DEBUG = True
    ALLOWED_HOSTS = ['*']

if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = 'DENY'
    SECURE_SSL_REDIRECT = True
    SECURE_REFERRER_POLICY = 'strict-origin-when-cross-origin'
    SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
    SECURE_HSTS_SECONDS = 31536000
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True

if _django_env == 'production':
    if _is_placeholder_secret(SECRET_KEY):
        raise ImproperlyConfigured(
            'SECRET_KEY insegura para producción. Define una clave robusta en .env.'
        )

    if not ALLOWED_HOSTS:
        raise ImproperlyConfigured(
            'ALLOWED_HOSTS vacío en producción. Define al menos un dominio real.'
        )

    if STRIPE_SECRET_KEY.startswith('sk_live_') and not STRIPE_WEBHOOK_SECRET.strip():
        raise ImproperlyConfigured(
            'STRIPE_WEBHOOK_SECRET es obligatorio con una clave live de Stripe.'
        )

    if DOCUMENT_STORE_BACKEND == 'memory':
        raise ImproperlyConfigured(
            'DOCUMENT_STORE_BACKEND=memory no es válido en producción.'
        )
