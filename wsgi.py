"""WSGI entry point: ``gunicorn wsgi:application``.

Settings are read from the environment (SECRET_KEY, DATABASE_URL,
SESSION_MAX_AGE, LOG_LEVEL, LOG_FILE, SCHEDULER).
"""
from app import create_app

application = create_app()
