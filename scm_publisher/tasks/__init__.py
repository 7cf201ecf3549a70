"""SCM Publisher Celery tasks."""
