import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name, default):
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "skillgate-insecure-dev-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_yasg",
    "Matching",
    "Admissions",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "SkillGate.urls"
WSGI_APPLICATION = "SkillGate.wsgi.application"

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
    },
]

if os.getenv("DB_ENGINE", "sqlite").lower() in ("postgres", "postgresql"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME"),
            "USER": os.getenv("DB_USER"),
            "PASSWORD": os.getenv("DB_PASSWORD"),
            "HOST": os.getenv("DB_HOST", "localhost"),
            "PORT": os.getenv("DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
            # writers queue on the busy timeout instead of failing with "database is locked"
            "OPTIONS": {"timeout": 20, "transaction_mode": "IMMEDIATE"},
            # a file, so threads get their own connections to one database
            "TEST": {"NAME": os.getenv("SQLITE_TEST_PATH", str(BASE_DIR / "test_db.sqlite3"))},
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
MEDIA_URL = "media/"
MEDIA_ROOT = BASE_DIR / "media"

REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {"handlers": ["console"], "level": os.getenv("LOG_LEVEL", "INFO")},
}

# Evaluation sandbox
EVALUATION_SANDBOX = os.getenv("EVALUATION_SANDBOX", "local")
EVALUATION_MAX_WORKERS = _env_int("EVALUATION_MAX_WORKERS", 4)
EVALUATION_MAX_RETRIES = _env_int("EVALUATION_MAX_RETRIES", 3)
EVALUATION_RETRY_DELAY = _env_float("EVALUATION_RETRY_DELAY", 1.0)
SANDBOX_TEST_TIMEOUT_SECONDS = _env_float("SANDBOX_TEST_TIMEOUT_SECONDS", 5.0)
SANDBOX_MEMORY_LIMIT_MB = _env_int("SANDBOX_MEMORY_LIMIT_MB", 256)
SANDBOX_MAX_OUTPUT_KB = _env_int("SANDBOX_MAX_OUTPUT_KB", 1024)
SANDBOX_MAX_PROCESSES = _env_int("SANDBOX_MAX_PROCESSES", 16)

JUDGE0_URL = os.getenv("JUDGE0_URL", "https://judge0-ce.p.rapidapi.com")
JUDGE0_KEY = os.getenv("JUDGE0_KEY") or os.getenv("RAPIDAPI_KEY")
JUDGE0_HOST = os.getenv("JUDGE0_HOST", "judge0-ce.p.rapidapi.com")

# Attempts left in Issued longer than this are abandoned by the sweep
ISSUED_ATTEMPT_TTL_MINUTES = _env_int("ISSUED_ATTEMPT_TTL_MINUTES", 24 * 60)

# Per-pair admission lease; must outlast the slowest evaluation
ADMISSION_LOCK_LEASE_SECONDS = _env_int("ADMISSION_LOCK_LEASE_SECONDS", 600)
ADMISSION_LOCK_WAIT_SECONDS = _env_float("ADMISSION_LOCK_WAIT_SECONDS", 30.0)
ADMISSION_LOCK_POLL_SECONDS = _env_float("ADMISSION_LOCK_POLL_SECONDS", 0.05)

# Re-running recommendations inside this window updates rows in place
RECOMMENDATION_REFRESH_MINUTES = _env_int("RECOMMENDATION_REFRESH_MINUTES", 15)

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
