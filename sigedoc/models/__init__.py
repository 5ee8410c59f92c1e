"""
SIGEDOC — Sistema de Gestión Documental
SQLAlchemy models package.

``db`` is the single Flask-SQLAlchemy extension instance shared by every
model module.  Import it from here, never instantiate another one:

    from sigedoc.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
