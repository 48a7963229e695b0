from celery import Celery

from dhis2_gateway.core.config import settings

# Create Celery instance
celery_app = Celery(
    "dhis2_gateway",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=['dhis2_gateway.workers.maintenance']
)

# Configure Celery
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'dhis2_gateway.workers.maintenance.*': {'queue': 'maintenance'},
    },

    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    task_acks_late=True,

    beat_schedule={
        # Release tasks claimed by crashed workers
        "sweep-processing-queues": {
            "task": "dhis2_gateway.workers.maintenance.sweep_processing_queues",
            "schedule": 30.0,
        },
        "reconcile-orphaned-submissions": {
            "task": "dhis2_gateway.workers.maintenance.reconcile_orphaned_submissions",
            "schedule": 120.0,
        },
        "monitor-queue-health": {
            "task": "dhis2_gateway.workers.maintenance.monitor_queue_health",
            "schedule": 300.0,
        },
    },
)
