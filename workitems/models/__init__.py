"""
Work-Item Lineage Service
SQLAlchemy instance shared by all models.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
