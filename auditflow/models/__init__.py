"""SQLAlchemy extension instance shared by every model module."""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
