"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-approval-samples --tenant-id 1
"""

from app import create_app

app = create_app()
