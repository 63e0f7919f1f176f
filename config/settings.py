import os
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlparse

from django.core.exceptions import ImproperlyConfigured
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def env_list(name: str, default: list[str] | None = None) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return default or []
    return [item.strip() for item in value.split(",") if item.strip()]


def env_number(name: str, default, cast=int):
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return cast(value)
    except ValueError as exc:
        raise ImproperlyConfigured(f"{name} must be a number, got {value!r}.") from exc


DJANGO_ENV = os.getenv("DJANGO_ENV", "dev").strip().lower()
if DJANGO_ENV not in {"dev", "staging", "prod"}:
    raise ImproperlyConfigured("DJANGO_ENV must be one of: dev, staging, prod.")
IS_PRODUCTION_LIKE = DJANGO_ENV != "dev"

DEBUG = env_bool("DEBUG", default=not IS_PRODUCTION_LIKE)
SECRET_KEY = os.getenv("SECRET_KEY") or ("django-insecure-pos-ledger-dev-key" if not IS_PRODUCTION_LIKE else "")
ALLOWED_HOSTS = env_list("ALLOWED_HOSTS", default=[] if IS_PRODUCTION_LIKE else ["localhost", "127.0.0.1"])
if IS_PRODUCTION_LIKE and not SECRET_KEY:
    raise ImproperlyConfigured("SECRET_KEY must be set when DJANGO_ENV is staging or prod.")
if IS_PRODUCTION_LIKE and not ALLOWED_HOSTS:
    raise ImproperlyConfigured("ALLOWED_HOSTS must be configured when DJANGO_ENV is staging or prod.")

# The POS front end is served from its own origin.
CORS_ALLOW_ALL_ORIGINS = env_bool("CORS_ALLOW_ALL_ORIGINS", default=not IS_PRODUCTION_LIKE)
CORS_ALLOWED_ORIGINS = env_list("CORS_ALLOWED_ORIGINS")
CORS_EXPOSE_HEADERS = ["Content-Disposition", "X-Request-ID"]
CSRF_TRUSTED_ORIGINS = env_list("CSRF_TRUSTED_ORIGINS")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    "corsheaders",
    "core",
    "inventory",
    "sales",
    "sync",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "common.logging.RequestLogMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]


def _database_settings(database_url: str) -> dict:
    """Shop documents live in one table; postgres in deployments, sqlite on a workstation."""
    if not database_url:
        if IS_PRODUCTION_LIKE:
            raise ImproperlyConfigured("DATABASE_URL must be set when DJANGO_ENV is staging or prod.")
        return {"ENGINE": "django.db.backends.sqlite3", "NAME": str(BASE_DIR / "db.sqlite3")}

    parsed = urlparse(database_url)
    if parsed.scheme == "sqlite":
        return {"ENGINE": "django.db.backends.sqlite3", "NAME": parsed.path.lstrip("/") or str(BASE_DIR / "db.sqlite3")}
    if parsed.scheme not in {"postgres", "postgresql"}:
        raise ImproperlyConfigured("DATABASE_URL must use postgres://, postgresql:// or sqlite:// scheme.")
    if not parsed.path.lstrip("/"):
        raise ImproperlyConfigured("DATABASE_URL must include a database name in the path.")
    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": parsed.path.lstrip("/"),
        "USER": parsed.username or "",
        "PASSWORD": parsed.password or "",
        "HOST": parsed.hostname or "",
        "PORT": str(parsed.port or ""),
        "CONN_MAX_AGE": env_number("DB_CONN_MAX_AGE", 60),
    }


DATABASES = {"default": _database_settings(os.getenv("DATABASE_URL", "").strip())}

AUTH_USER_MODEL = "core.User"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True
STATIC_URL = "/static/"

# Uploaded catalog and purchase sheets are parsed in memory.
DATA_UPLOAD_MAX_MEMORY_SIZE = env_number("UPLOAD_MAX_BYTES", 5 * 1024 * 1024)
FILE_UPLOAD_MAX_MEMORY_SIZE = DATA_UPLOAD_MAX_MEMORY_SIZE

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": ["core.authentication.ShopJWTAuthentication"],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_PAGINATION_CLASS": "common.pagination.LedgerPagination",
    "PAGE_SIZE": env_number("API_PAGE_SIZE", 50),
    "EXCEPTION_HANDLER": "common.exceptions.custom_exception_handler",
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": os.getenv("DRF_THROTTLE_ANON", "100/hour"),
        "user": os.getenv("DRF_THROTTLE_USER", "5000/hour"),
        "auth": os.getenv("DRF_THROTTLE_AUTH", "30/minute"),
    },
}

# Idle sessions are cut off by LEDGER["INACTIVITY_TIMEOUT_MINUTES"] long before the token expires.
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(hours=env_number("JWT_ACCESS_TOKEN_HOURS", 12)),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=env_number("JWT_REFRESH_TOKEN_DAYS", 7)),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "UPDATE_LAST_LOGIN": True,
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "pos-ledger",
    }
}

LEDGER = {
    "INACTIVITY_TIMEOUT_MINUTES": env_number("LEDGER_INACTIVITY_TIMEOUT_MINUTES", 30),
    "RESTORE_STOCK_ON_INVOICE_CHANGE": env_bool("LEDGER_RESTORE_STOCK_ON_INVOICE_CHANGE", default=False),
    "CURRENCY": os.getenv("LEDGER_CURRENCY", "BDT"),
}

# Disabled while URL is empty.
REMOTE_MIRROR = {
    "URL": os.getenv("REMOTE_MIRROR_URL", "").strip().rstrip("/"),
    "TOKEN": os.getenv("REMOTE_MIRROR_TOKEN", ""),
    "DEBOUNCE_SECONDS": env_number("REMOTE_MIRROR_DEBOUNCE_SECONDS", 2.0, float),
    "TIMEOUT_SECONDS": env_number("REMOTE_MIRROR_TIMEOUT_SECONDS", 10.0, float),
}
if REMOTE_MIRROR["URL"] and not urlparse(REMOTE_MIRROR["URL"]).netloc:
    raise ImproperlyConfigured("REMOTE_MIRROR_URL must be an absolute URL including scheme and host.")

SECURE_SSL_REDIRECT = env_bool("SECURE_SSL_REDIRECT", default=IS_PRODUCTION_LIKE)
SESSION_COOKIE_SECURE = env_bool("SESSION_COOKIE_SECURE", default=IS_PRODUCTION_LIKE)
CSRF_COOKIE_SECURE = env_bool("CSRF_COOKIE_SECURE", default=IS_PRODUCTION_LIKE)
SECURE_HSTS_SECONDS = env_number("SECURE_HSTS_SECONDS", 31536000 if IS_PRODUCTION_LIKE else 0)
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = "DENY"
if env_bool("SECURE_PROXY_SSL_HEADER_ENABLED", default=IS_PRODUCTION_LIKE):
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LEDGER_LOGGERS = (
    "django",
    "api.request",
    "ledger",
    "sync.mirror",
    "security.authentication",
    "security.authorization",
)
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {"json": {"()": "common.logging.JsonFormatter"}},
    "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "json"}},
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {name: {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False} for name in LEDGER_LOGGERS},
}
