"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-roles
    flask --app wsgi create-superuser admin@example.com 'S3cure-Pass'
"""

from qms import create_app

app = create_app()
