import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / '.env')


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-insecure-key-change-me')
DEBUG = env_bool('DJANGO_DEBUG', True)
ALLOWED_HOSTS = [h.strip() for h in os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',') if h.strip()]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'Chama_pay',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'chamapay_site.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'chamapay_site.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('SQLITE_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'chamapay',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.AutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Africa/Nairobi'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'standard': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'standard',
        },
    },
    'loggers': {
        'Chama_pay': {
            'handlers': ['console'],
            'level': os.environ.get('LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# Mobile money gateway (M-Pesa Daraja)
MPESA_MODE = os.environ.get('MPESA_MODE', 'manual')
MPESA_CONSUMER_KEY = os.environ.get('MPESA_CONSUMER_KEY', '')
MPESA_CONSUMER_SECRET = os.environ.get('MPESA_CONSUMER_SECRET', '')
MPESA_PASSKEY = os.environ.get('MPESA_PASSKEY', '')
MPESA_BUSINESS_SHORT_CODE = os.environ.get('MPESA_BUSINESS_SHORT_CODE', '174379')
MPESA_TRANSACTION_TYPE = os.environ.get('MPESA_TRANSACTION_TYPE', 'CustomerPayBillOnline')
MPESA_ACCESS_TOKEN_URL = os.environ.get(
    'MPESA_ACCESS_TOKEN_URL',
    'https://sandbox.safaricom.co.ke/oauth/v1/generate?grant_type=client_credentials',
)
MPESA_STK_PUSH_URL = os.environ.get(
    'MPESA_STK_PUSH_URL',
    'https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest',
)
MPESA_B2C_URL = os.environ.get(
    'MPESA_B2C_URL',
    'https://sandbox.safaricom.co.ke/mpesa/b2c/v1/paymentrequest',
)
MPESA_CALLBACK_URL = os.environ.get('MPESA_CALLBACK_URL', '')
MPESA_B2C_RESULT_URL = os.environ.get('MPESA_B2C_RESULT_URL', '')
MPESA_TIMEOUT_URL = os.environ.get('MPESA_TIMEOUT_URL', '')
MPESA_ACCOUNT_REFERENCE = os.environ.get('MPESA_ACCOUNT_REFERENCE', 'ChamaDAO')
MPESA_TRANSACTION_DESCRIPTION = os.environ.get('MPESA_TRANSACTION_DESCRIPTION', 'ChamaDAO deposit')
MPESA_INITIATOR_NAME = os.environ.get('MPESA_INITIATOR_NAME', 'ChamaDAO')
MPESA_SECURITY_CREDENTIAL = os.environ.get('MPESA_SECURITY_CREDENTIAL', '')
MPESA_COUNTRY_CODE = os.environ.get('MPESA_COUNTRY_CODE', '254')
MPESA_API_TIMEOUT = int(os.environ.get('MPESA_API_TIMEOUT', '20'))
MPESA_WEBHOOK_TOKEN = os.environ.get('MPESA_WEBHOOK_TOKEN', '')

# Exchange rate quotes
EXCHANGE_RATE_API_URL = os.environ.get('EXCHANGE_RATE_API_URL', 'https://open.er-api.com/v6/latest/USD')
EXCHANGE_RATE_CACHE_MINUTES = int(os.environ.get('EXCHANGE_RATE_CACHE_MINUTES', '60'))
EXCHANGE_RATE_FALLBACK = os.environ.get('EXCHANGE_RATE_FALLBACK', '130.00')
EXCHANGE_RATE_API_TIMEOUT = int(os.environ.get('EXCHANGE_RATE_API_TIMEOUT', '10'))
LOCAL_CURRENCY = os.environ.get('LOCAL_CURRENCY', 'KES')
TOKEN_CURRENCY = os.environ.get('TOKEN_CURRENCY', 'USDT')

# Chain settlement relay
CHAIN_MODE = os.environ.get('CHAIN_MODE', 'manual')
CHAIN_API_BASE_URL = os.environ.get('CHAIN_API_BASE_URL', '')
CHAIN_API_TRANSFER_PATH = os.environ.get('CHAIN_API_TRANSFER_PATH', '/transfers')
CHAIN_API_STATUS_PATH = os.environ.get('CHAIN_API_STATUS_PATH', '/transfers/{tx_id}')
CHAIN_API_KEY = os.environ.get('CHAIN_API_KEY', '')
CHAIN_API_KEY_HEADER = os.environ.get('CHAIN_API_KEY_HEADER', 'X-API-Key')
CHAIN_API_TOKEN = os.environ.get('CHAIN_API_TOKEN', '')
CHAIN_API_TIMEOUT = int(os.environ.get('CHAIN_API_TIMEOUT', '30'))
CHAIN_TRANSFER_WORKERS = int(os.environ.get('CHAIN_TRANSFER_WORKERS', '4'))
CHAIN_TRANSFER_MAX_ATTEMPTS = int(os.environ.get('CHAIN_TRANSFER_MAX_ATTEMPTS', '5'))
CHAIN_TRANSFER_BACKOFF_SECONDS = int(os.environ.get('CHAIN_TRANSFER_BACKOFF_SECONDS', '30'))

SETTLEMENT_PENDING_TIMEOUT_MINUTES = int(os.environ.get('SETTLEMENT_PENDING_TIMEOUT_MINUTES', '30'))
