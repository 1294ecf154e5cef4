"""
Content Approval Platform — shared SQLAlchemy handle.

Every model module imports ``db`` from here so that a single
Flask-SQLAlchemy extension instance is bound by ``create_app``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
