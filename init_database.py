#!/usr/bin/env python3
"""
Initialize the Governance Service database.

This script creates all database tables without starting the web server.
Useful for development and testing.
"""

from app import app
from db.database import db

if __name__ == '__main__':
    print("Initializing Governance Service database...")
    with app.app_context():
        db.create_all()
    print("Database initialized successfully!")
    print(f"Database location: {app.config.get('SQLALCHEMY_DATABASE_URI', 'sqlite:///governance.db')}")
