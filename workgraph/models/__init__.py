"""
Workgraph persistence layer.

``db`` is the shared Flask-SQLAlchemy extension. Model modules import it from
here; ``create_app`` imports the model modules so metadata (and Alembic
autogenerate) sees every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
