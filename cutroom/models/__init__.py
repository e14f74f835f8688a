"""
Cutroom Collaboration Platform
Model registry: shared SQLAlchemy handle.

Every model module imports ``db`` from here; ``create_app`` imports the
model modules so ``db.create_all()`` and Flask-Migrate see every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
