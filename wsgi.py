"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app --worker-class gthread --threads 8
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from cutroom import create_app

app = create_app()
