"""
Utilities package for the governance service.

This package contains utility functions and helpers used throughout the application.
"""
