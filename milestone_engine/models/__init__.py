"""
Milestone Progress Engine
SQLAlchemy models package.

The shared ``db`` handle is created here and bound to the app in
``milestone_engine.create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
