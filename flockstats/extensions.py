"""Flask extensions shared by models and services.

Created unbound here and attached to the app in ``create_app``:
- ``db``: the relational store for battles, rollups, roster and audit rows
- ``cache``: read-mostly reference data (the battle schedule calendar)
"""
from flask_sqlalchemy import SQLAlchemy
from flask_caching import Cache

db = SQLAlchemy()
cache = Cache()
