"""
WSGI / Flask-Migrate entry point.

Usage:
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
    flask seed-escalation-policy
    flask run-scheduler
"""

from docflow import create_app

app = create_app()
