from celery import Celery
from celery import signals
import logging
import time
from prometheus_client import Counter, Histogram
from traffic_advisor.config import get_settings
from traffic_advisor.infrastructure.metrics import registry

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "traffic_advisor",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "traffic_advisor.tasks.recommendation",
    ],
)

celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"], timezone="UTC", enable_utc=True)

TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'], registry=registry)
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'], registry=registry)
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], buckets=(0.05,0.1,0.25,0.5,1,2,5,10,30,60), registry=registry)

_task_start_times = {}

@signals.task_prerun.connect
def _task_prerun(sender=None, task_id=None, **kwargs):  # noqa
    _task_start_times[task_id] = time.time()

@signals.task_postrun.connect
def _task_postrun(sender=None, task_id=None, state=None, **kwargs):  # noqa
    task = sender.name if sender else 'unknown'
    start = _task_start_times.pop(task_id, None)
    if start is not None:
        TASK_DURATION.labels(task=task).observe(time.time() - start)
    if state == 'SUCCESS':
        TASK_SUCCESS.labels(task=task).inc()
    elif state is not None:
        TASK_FAILURE.labels(task=task).inc()
        logger.warning("task %s finished in state %s", task, state)

# Periodic tasks (beat). Requires worker with -B or separate beat service.
celery_app.conf.beat_schedule = {
    "generate-recommendations": {
        "task": "traffic_advisor.tasks.recommendation.generate_recommendations",
        "schedule": float(settings.generation_interval_sec),
    },
    "expire-recommendations-hourly": {
        "task": "traffic_advisor.tasks.recommendation.expire_recommendations",
        "schedule": 3600.0,
    },
}
