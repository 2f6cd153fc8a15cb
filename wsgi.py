"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db migrate -m "description"
    flask db upgrade
    flask sweep-milestones --limit 50
"""

from milestone_engine import create_app

app = create_app()
