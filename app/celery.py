from celery import Celery

# Create Celery app for the ping dispatcher worker and beat
celery = Celery("vibecheck")

# Load configuration from app.config.celeryconfig module
celery.config_from_object("app.config.celeryconfig")
