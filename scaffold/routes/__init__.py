"""
Flask Blueprints organised by domain.

Each blueprint accesses the ``ServiceServer`` instance via
``current_app.config['server']``.
"""

from .ops_bp import ops_bp
from .users_bp import users_bp

__all__ = ["ops_bp", "users_bp"]
