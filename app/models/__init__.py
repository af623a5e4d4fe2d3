"""
Agency Compliance Portal
SQLAlchemy models package.

``db`` is the single Flask-SQLAlchemy handle; every model module imports it
from here and ``create_app`` binds it with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
