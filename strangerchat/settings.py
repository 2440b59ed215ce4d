"""
Django settings for strangerchat project.

환경변수(.env 포함)로 덮어쓸 수 있는 값만 여기서 읽는다.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def env_bool(name: str, default: bool) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "strangerchat-dev-only-secret")
DEBUG = env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "channels",
    "strangerchat.apps.chat_app",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "strangerchat.urls"
ASGI_APPLICATION = "strangerchat.asgi.application"

# 채팅 기록은 저장하지 않으므로 DB 없음
DATABASES = {}

USE_TZ = True
TIME_ZONE = "UTC"

# ────────────────────────────────────────────────────────────────────────────────
# Redis (django-redis): 대기열 / active set / lock / pub-sub 모두 여기서
# ────────────────────────────────────────────────────────────────────────────────
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
        },
    }
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "UNAUTHENTICATED_USER": None,
}

# ────────────────────────────────────────────────────────────────────────────────
# 매칭 설정 (초 단위)
# ────────────────────────────────────────────────────────────────────────────────
STRANGERCHAT_LOCK_TTL = float(os.environ.get("STRANGERCHAT_LOCK_TTL", "5"))
STRANGERCHAT_LOCK_RETRY_INTERVAL = float(os.environ.get("STRANGERCHAT_LOCK_RETRY_INTERVAL", "0.1"))
STRANGERCHAT_NOTIFY_TIMEOUT = float(os.environ.get("STRANGERCHAT_NOTIFY_TIMEOUT", "1.0"))
STRANGERCHAT_LISTEN_POLL_INTERVAL = float(os.environ.get("STRANGERCHAT_LISTEN_POLL_INTERVAL", "0.5"))
STRANGERCHAT_AUTO_REQUEUE = env_bool("STRANGERCHAT_AUTO_REQUEUE", False)
# ASGI 프로세스마다 매칭 루프를 하나씩 같이 띄울지 (run_matchmaker 로 따로 띄우면 False)
STRANGERCHAT_EMBEDDED_MATCHMAKER = env_bool("STRANGERCHAT_EMBEDDED_MATCHMAKER", True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "strangerchat": {
            "handlers": ["console"],
            "level": os.environ.get("STRANGERCHAT_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
