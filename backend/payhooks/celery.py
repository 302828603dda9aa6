import os

from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'payhooks.settings')

app = Celery('payhooks')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing: webhook work runs on its own queue
app.conf.task_routes = {
    "billing.tasks.process_webhook_delivery": {"queue": "billing"},
    "billing.tasks.retry_failed_webhook": {"queue": "billing"},
    "billing.tasks.retry_due_failed_webhooks": {"queue": "billing"},
    "billing.tasks.expire_lapsed_subscriptions": {"queue": "billing"},
    "billing.tasks.cleanup_webhook_logs": {"queue": "maintenance"},
    "billing.tasks.send_subscription_notification": {"queue": "notifications"},

    # Default queue
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
        'notifications': {
            'exchange': 'notifications',
            'routing_key': 'notifications',
        },
        'maintenance': {
            'exchange': 'maintenance',
            'routing_key': 'maintenance',
        },
    },

    task_ignore_result=False,
    task_store_errors_even_if_ignored=True,
)

app.conf.task_annotations = {
    'billing.tasks.send_subscription_notification': {
        'rate_limit': '60/m',
        'max_retries': 3,
        'default_retry_delay': 60,
    },
}

# Celery Beat schedule configuration
app.conf.beat_schedule = {
    "retry_due_failed_webhooks_5min": {
        "task": "billing.tasks.retry_due_failed_webhooks",
        "schedule": crontab(minute="*/5"),
        "options": {"queue": "billing"},
    },
    "expire_lapsed_subscriptions_15min": {
        "task": "billing.tasks.expire_lapsed_subscriptions",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "billing", "priority": 8},
    },
    "cleanup_webhook_logs_daily": {
        "task": "billing.tasks.cleanup_webhook_logs",
        "schedule": crontab(hour=4, minute=0),
        "options": {"queue": "maintenance"},
    },
}
