from pathlib import Path
import os
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only")
DEBUG = os.getenv("DJANGO_DEBUG", "1") == "1"
APPEND_SLASH = True

ALLOWED_HOSTS = ["*", "localhost", "127.0.0.1"]


INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.admin",

    "corsheaders",
    "rest_framework",
    "drf_spectacular",

    "commons",   # health/time endpoints
    "cpe",       # emissão de comprovantes eletrônicos
]


MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "commons.middleware.RequestLogMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "config.urls"

CORS_ALLOW_ALL_ORIGINS = True

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("PGDATABASE", "cpedados"),
        "USER": os.getenv("PGUSER", "postgres"),
        "PASSWORD": os.getenv("PGPASSWORD", ""),
        "HOST": os.getenv("PGHOST", "127.0.0.1"),
        "PORT": os.getenv("PGPORT", "5432"),
        "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
        "TEST": {
            "NAME": "test_cpedados",
        },
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_THROTTLE_CLASSES": ["rest_framework.throttling.UserRateThrottle"],
    "DEFAULT_THROTTLE_RATES": {"user": "60/min"},
}

from datetime import timedelta
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

LANGUAGE_CODE = "pt-br"
TIME_ZONE = "America/Lima"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"

SPECTACULAR_SETTINGS = {
    "TITLE": "Emissor CPE API",
    "VERSION": "1.0",
    "SERVE_INCLUDE_SCHEMA": False,
}

sentry_sdk.init(
    dsn=os.getenv("SENTRY_DSN", ""),
    integrations=[DjangoIntegration()],
    traces_sample_rate=0.1,
    send_default_pii=False,
)

# =============================
# 🧱 Templates
# =============================
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "cpe-default",
    }
}

# =============================
# 🧾 Emissão CPE (SUNAT)
# =============================
CPE_STORAGE_PATH = os.getenv("CPE_STORAGE_PATH", str(BASE_DIR / "storage" / "cpe"))

# Assinador XAdES externo; vazio = assinatura desabilitada
CPE_XADES_URL = os.getenv("CPE_XADES_URL", "")
CPE_XADES_KEY_ALIAS = os.getenv("CPE_XADES_KEY_ALIAS", "prod")
CPE_XADES_TIMEOUT = int(os.getenv("CPE_XADES_TIMEOUT", "15"))

# beta | prod
CPE_SUNAT_ENV = os.getenv("CPE_SUNAT_ENV", "beta")
CPE_SUNAT_BETA_ENDPOINT = os.getenv(
    "CPE_SUNAT_BETA_ENDPOINT",
    "https://e-beta.sunat.gob.pe/ol-ti-itcpfegem-beta/billService",
)
CPE_SUNAT_PROD_ENDPOINT = os.getenv(
    "CPE_SUNAT_PROD_ENDPOINT",
    "https://e-factura.sunat.gob.pe/ol-ti-itcpfegem/billService",
)
CPE_SUNAT_SOL_USER = os.getenv("CPE_SUNAT_SOL_USER", "MODDATOS")
CPE_SUNAT_SOL_PASSWORD = os.getenv("CPE_SUNAT_SOL_PASSWORD", "moddatos")
CPE_SUNAT_TIMEOUT = int(os.getenv("CPE_SUNAT_TIMEOUT", "30"))
CPE_SUNAT_MAX_RETRIES = int(os.getenv("CPE_SUNAT_MAX_RETRIES", "1"))

CPE_IGV_RATE = os.getenv("CPE_IGV_RATE", "0.18")

# Dados do emissor (domicílio fiscal)
CPE_ISSUER_RUC = os.getenv("CPE_ISSUER_RUC", "20000000001")
CPE_ISSUER_RAZAO_SOCIAL = os.getenv("CPE_ISSUER_RAZAO_SOCIAL", "RAZON SOCIAL")
CPE_ISSUER_NOME_COMERCIAL = os.getenv("CPE_ISSUER_NOME_COMERCIAL", "")
CPE_ISSUER_UBIGEO = os.getenv("CPE_ISSUER_UBIGEO", "150101")
CPE_ISSUER_ENDERECO = os.getenv("CPE_ISSUER_ENDERECO", "Dirección no especificada")
CPE_ISSUER_DISTRITO = os.getenv("CPE_ISSUER_DISTRITO", "Lima")
CPE_ISSUER_PROVINCIA = os.getenv("CPE_ISSUER_PROVINCIA", "Lima")
CPE_ISSUER_DEPARTAMENTO = os.getenv("CPE_ISSUER_DEPARTAMENTO", "Lima")


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "class": "pythonjsonlogger.json.JsonFormatter",
        },
        "simple": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "level": "INFO",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": True,
        },
        "cpe.fiscal": {
            "handlers": ["console"],
            "level": "DEBUG",
            "propagate": True,
        },
    },
}

SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True
SECURE_HSTS_SECONDS = 63072000
SECURE_FRAME_DENY = True
SECURE_CONTENT_TYPE_NOSNIFF = True
SECURE_BROWSER_XSS_FILTER = True
