"""Celery entry point: celery -A scm_publisher.worker worker --beat"""
from scm_publisher import create_app

app = create_app()
celery = app.extensions["celery"]
