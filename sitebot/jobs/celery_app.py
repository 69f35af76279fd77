from celery import Celery

from sitebot.config import JOBS

celery_app = Celery("sitebot", broker=JOBS["broker_url"], include=["sitebot.jobs.tasks"])

celery_app.conf.update(
    task_default_queue=JOBS["queue"],
    task_serializer="json",
    accept_content=["json"],
    result_backend=None,
    task_ignore_result=True,
    # a crawl is acknowledged on receipt and never redelivered
    task_acks_late=False,
    worker_prefetch_multiplier=1,
    worker_concurrency=JOBS["worker_concurrency"],
)
