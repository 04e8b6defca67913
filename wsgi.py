"""
Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi db migrate -m "description"
    flask --app wsgi show-tree [WORKSTREAM_ID]
"""

from workgraph import create_app

app = create_app()
