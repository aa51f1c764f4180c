from celery import Celery

from app.core.config import settings

# Create Celery instance
celery_app = Celery(
    "barbershop",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.services.expiry"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,
    task_routes={
        "reservations.*": {"queue": "reservations"},
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
    beat_schedule={
        "expire-passed-reservations": {
            "task": "reservations.expire_passed",
            "schedule": float(settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
        },
    },
)
