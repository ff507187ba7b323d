from app.tasks.celery_app import celery
from app.tasks import worker_jobs


@celery.task(name="app.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)


@celery.task(name="app.tasks.jobs.resend_confirmation")
def resend_confirmation(booking_id: str):
    return worker_jobs.resend_confirmation(booking_id)
