"""
Flask-Migrate / Alembic and WSGI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-approval-stages
    gunicorn wsgi:app
"""

from sowflow import create_app

app = create_app()
