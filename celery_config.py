from celery import Celery
from config import config

celery_app = Celery(
    "ab_test_tasks",
    broker=config.celery_broker_url,
    backend=config.celery_backend_url,
    include=["celery_tasks.ab_test_tasks"]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Keep the request-id log format set up by config instead of celery's own
    worker_hijack_root_logger=False,

    # Recording a conversion is idempotent, so a message redelivered after a
    # worker crash is harmless
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Retries publishing when the API cannot reach the broker
    task_publish_retry=True,
    task_publish_retry_policy={
        'max_retries': 10,
        'interval_start': 0.5,
        'interval_step': 0.5,
        'interval_max': 5,
    },
)

# Conversions stay on the default queue so slow monitoring runs never delay them
celery_app.conf.task_routes = {
    'celery_tasks.ab_test_tasks.record_conversion_task': {'queue': 'default'},
    'celery_tasks.ab_test_tasks.monitor_running_tests': {'queue': 'monitoring'},
}

# Worker: celery -A celery_config worker -Q default,monitoring
# Beat:   celery -A celery_config beat
celery_app.conf.beat_schedule = {
    'monitor-running-ab-tests': {
        'task': 'celery_tasks.ab_test_tasks.monitor_running_tests',
        'schedule': float(config.monitor_interval_seconds),
        # a run older than one interval is superseded by the next
        'options': {'expires': config.monitor_interval_seconds},
    },
}
