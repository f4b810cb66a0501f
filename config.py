"""
Centralized configuration for the governance and KYC service.

This module provides a single source of truth for all configuration settings,
with environment variable support and validation.
"""

import os
from pathlib import Path
from typing import Optional


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration class with common settings."""

    # Application
    APP_NAME = "Governance Service"
    APP_VERSION = "1.0.0"

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or os.urandom(32).hex()
    TESTING = _env_flag('TESTING', 'false')
    DEBUG = _env_flag('DEBUG', 'false')
    PORT = int(os.environ.get('PORT', 5555))
    HOST = os.environ.get('HOST', '0.0.0.0')
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')

    # Database
    DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///governance.db')
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Rate Limiting
    RATE_LIMIT_ENABLED = not TESTING  # Disable in tests
    RATE_LIMIT_API_REQUESTS = int(os.environ.get('RATE_LIMIT_API_REQUESTS', 30))  # per minute
    RATE_LIMIT_API_WINDOW = int(os.environ.get('RATE_LIMIT_API_WINDOW', 60))  # seconds
    RATE_LIMIT_WEBHOOK_REQUESTS = int(os.environ.get('RATE_LIMIT_WEBHOOK_REQUESTS', 300))
    RATE_LIMIT_WEBHOOK_WINDOW = int(os.environ.get('RATE_LIMIT_WEBHOOK_WINDOW', 60))

    # Governance
    PROPOSAL_DEFAULT_QUORUM = int(os.environ.get('PROPOSAL_DEFAULT_QUORUM', 1000000))
    PROPOSAL_TITLE_MAX_LENGTH = int(os.environ.get('PROPOSAL_TITLE_MAX_LENGTH', 200))

    # KYC / identity provider webhooks
    KYC_WEBHOOK_SECRET = os.environ.get('KYC_WEBHOOK_SECRET', '')
    KYC_WEBHOOK_ALLOW_UNSIGNED = _env_flag('KYC_WEBHOOK_ALLOW_UNSIGNED', 'false')
    KYC_SIGNATURE_HEADER = 'X-Didit-Signature'
    # An empty document set only counts as verified when this is False
    KYC_REQUIRE_DOCUMENTS = _env_flag('KYC_REQUIRE_DOCUMENTS', 'true')
    KYC_MIN_RISK_SCORE = int(os.environ.get('KYC_MIN_RISK_SCORE', 70))

    # Profit distribution strategies
    DISTRIBUTION_INSTITUTIONAL_BONUS = float(os.environ.get('DISTRIBUTION_INSTITUTIONAL_BONUS', 1.1))
    DISTRIBUTION_EARLY_INVESTOR_BONUS = float(os.environ.get('DISTRIBUTION_EARLY_INVESTOR_BONUS', 1.25))

    # Security Headers
    SECURITY_HEADERS_ENABLED = _env_flag('SECURITY_HEADERS_ENABLED', 'true')
    HSTS_MAX_AGE = int(os.environ.get('HSTS_MAX_AGE', 31536000))  # 1 year
    CSP_POLICY = os.environ.get('CSP_POLICY', "default-src 'self'")

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')  # 'json' or 'text'
    LOG_FILE = os.environ.get('LOG_FILE', None)  # None = stdout only
    AUDIT_LOG_FILE = os.environ.get('AUDIT_LOG_FILE', None)

    # API Keys
    API_KEY_LENGTH = int(os.environ.get('API_KEY_LENGTH', 32))  # bytes, before base64

    @classmethod
    def validate(cls):
        """Validate configuration values."""
        errors = []

        if cls.RATE_LIMIT_API_REQUESTS < 1:
            errors.append("RATE_LIMIT_API_REQUESTS must be >= 1")
        if cls.RATE_LIMIT_WEBHOOK_REQUESTS < 1:
            errors.append("RATE_LIMIT_WEBHOOK_REQUESTS must be >= 1")

        if cls.PROPOSAL_DEFAULT_QUORUM < 1:
            errors.append("PROPOSAL_DEFAULT_QUORUM must be >= 1")
        if cls.PROPOSAL_TITLE_MAX_LENGTH < 1:
            errors.append("PROPOSAL_TITLE_MAX_LENGTH must be >= 1")

        if not 0 <= cls.KYC_MIN_RISK_SCORE <= 100:
            errors.append("KYC_MIN_RISK_SCORE must be between 0 and 100")

        if cls.DISTRIBUTION_INSTITUTIONAL_BONUS <= 0:
            errors.append("DISTRIBUTION_INSTITUTIONAL_BONUS must be > 0")
        if cls.DISTRIBUTION_EARLY_INVESTOR_BONUS <= 0:
            errors.append("DISTRIBUTION_EARLY_INVESTOR_BONUS must be > 0")

        if cls.API_KEY_LENGTH < 16:
            errors.append("API_KEY_LENGTH must be >= 16 for security")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        return True

    @classmethod
    def ensure_directories(cls):
        """Ensure required directories exist."""
        if cls.LOG_FILE:
            Path(cls.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        if cls.AUDIT_LOG_FILE:
            Path(cls.AUDIT_LOG_FILE).parent.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development environment configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing environment configuration."""
    TESTING = True
    DATABASE_URL = 'sqlite:///:memory:'  # In-memory database for tests
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATE_LIMIT_ENABLED = False  # Disable rate limiting in tests
    KYC_WEBHOOK_SECRET = 'test-webhook-secret'
    KYC_WEBHOOK_ALLOW_UNSIGNED = False
    LOG_FORMAT = 'text'


class ProductionConfig(Config):
    """Production environment configuration."""
    DEBUG = False
    TESTING = False

    @classmethod
    def validate(cls):
        """Additional validation for production."""
        super().validate()
        if not os.environ.get('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")
        if not cls.KYC_WEBHOOK_SECRET:
            raise ValueError("KYC_WEBHOOK_SECRET environment variable must be set in production")
        if cls.KYC_WEBHOOK_ALLOW_UNSIGNED:
            raise ValueError("KYC_WEBHOOK_ALLOW_UNSIGNED cannot be enabled in production")
        if cls.DATABASE_URL.startswith('sqlite:///'):
            import warnings
            warnings.warn("SQLite is not recommended for production. Use PostgreSQL or MySQL.")


# Configuration dictionary for easy access
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(env: Optional[str] = None) -> type[Config]:
    """
    Get configuration class for specified environment.

    Args:
        env: Environment name ('development', 'testing', 'production')
             If None, uses FLASK_ENV environment variable

    Returns:
        Configuration class for the environment
    """
    if env is None:
        env = os.environ.get('FLASK_ENV', 'development')

    config_class = config.get(env, config['default'])
    config_class.validate()
    config_class.ensure_directories()

    return config_class
