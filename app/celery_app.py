from __future__ import annotations

import logging
from typing import Any

from celery import Celery, Task
from celery.signals import setup_logging
from kombu import Queue

from .core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# -----------------------------------------------------------------------------
# Celery App
# -----------------------------------------------------------------------------
celery_app = Celery(
    "rollcall",
    broker=settings.celery.CELERY_BROKER_URL,
    backend=settings.celery.CELERY_RESULT_BACKEND,
    include=["app.tasks"],
)

celery_app.conf.update(
    task_serializer=settings.celery.CELERY_TASK_SERIALIZER,
    result_serializer=settings.celery.CELERY_RESULT_SERIALIZER,
    accept_content=settings.celery.CELERY_ACCEPT_CONTENT,
    timezone=settings.celery.CELERY_TIMEZONE,
    enable_utc=settings.celery.CELERY_ENABLE_UTC,
    task_routes={
        "app.tasks.registration_*": {"queue": "notifications"},
        "app.tasks.attendee_checked_in": {"queue": "notifications"},
        "app.tasks.batch_completed": {"queue": "audit"},
    },
    task_default_queue="default",
    task_queues={
        "default": Queue("default"),
        "notifications": Queue("notifications"),
        "audit": Queue("audit"),
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,
    result_expires=3600,
    task_soft_time_limit=60,
    task_time_limit=120,
)

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure JSON logging for Celery workers."""
    from logging.config import dictConfig

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": "pythonjsonlogger.json.JsonFormatter",
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
            },
            "root": {
                "handlers": ["console"],
                "level": settings.monitoring.LOG_LEVEL,
            },
        }
    )


# -----------------------------------------------------------------------------
# Custom Base Task
# -----------------------------------------------------------------------------


class CallbackTask(Task):
    """Base task class with structured logging for lifecycle events."""

    abstract = True

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        einfo: Any,
    ) -> None:
        logger.error(
            f"Task {self.name} [{task_id}] failed: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "task_kwargs": kwargs},
        )


celery_app.Task = CallbackTask
