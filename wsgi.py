"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi run
"""

from solarops import create_app

app = create_app()
