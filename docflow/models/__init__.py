"""
Docflow Routing & Escalation Engine
SQLAlchemy extension instance shared by every model module.

Usage:
    from docflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
