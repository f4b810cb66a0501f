"""Database package for the governance service."""
