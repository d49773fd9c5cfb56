"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi matrix-export 12 matrix.xlsx
"""

from crewflow import create_app

app = create_app()
