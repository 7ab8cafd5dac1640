# shopcart/celery_worker.py
from celery import Celery

from shopcart.utils.settings import load_settings

settings = load_settings()

celery_app = Celery(
    "shopcart",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# WAZNE: explicite importuj taski, zeby Celery je zarejestrowal
celery_app.conf.imports = ("shopcart.tasks.expire",)

# Konfiguracja beat schedule
celery_app.conf.beat_schedule = {
    "expire-carts-every-minute": {
        "task": "shopcart.tasks.expire.expire_carts_task",
        "schedule": 60.0,  # co 60 sekund
    },
}

celery_app.conf.timezone = "UTC"
