"""
CrewFlow
SQLAlchemy database handle shared by every model module.

Usage:
    from crewflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
