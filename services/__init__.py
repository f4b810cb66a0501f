"""
Services package for the governance service.

This package contains the proposal and vote engine, the KYC webhook state
machine, profit distribution strategies and API key authentication.
"""
