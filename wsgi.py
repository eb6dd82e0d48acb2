"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask seed-demo-data
"""

from workitems import create_app

app = create_app()
