"""Database setup utilities.

This module centralises the SQLAlchemy extension object used by the
models and by the SQLAlchemy-backed gateway backend. The application
factory binds ``db`` to the Flask app; import it from
``agency_console`` rather than from this module directly.
"""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
