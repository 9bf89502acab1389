from celery import Celery
from celery.signals import after_setup_logger

from zulip_pusher.configs import configs

celery_app = Celery(
    "zulip_pusher_worker",
    broker=configs.Redis.REDIS_URL,
    backend=configs.Redis.REDIS_URL,
    include=["zulip_pusher.tasks.poll"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    worker_hijack_root_logger=False,
    beat_schedule={
        "poll-subscriptions": {
            "task": "poll_subscriptions",
            "schedule": float(configs.Poller.TriggerIntervalSecs),
        },
    },
)


@after_setup_logger.connect
def setup_worker_logging(**kwargs: object) -> None:
    """Apply the shared logging config inside the worker process."""
    from zulip_pusher.core.logger import setup_logging

    setup_logging()
