"""
Routes package for the governance service.

Each module defines a Flask blueprint registered by ``app.create_app``.
"""
