"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi maap-finalize --employee-id 12 --employee-id 13 --reason "Q3 close"
    gunicorn wsgi:app
"""

from maap import create_app

app = create_app()
