"""
SOW Workflow Engine
SQLAlchemy extension instance shared by every model module.

Usage:
    from sowflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
