"""
Governance Service REST API Application Entry Point.
Sets up the Flask app, configuration, CORS, database,
and registers blueprints for the governance, KYC and admin routes."""

import os
import logging
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from config import get_config
from db.database import init_db
from routes.governance_routes import governance_bp
from routes.kyc_routes import kyc_bp
from routes.admin_routes import admin_bp
from utils.security_utils import add_security_headers


# Load environment variables from .env file
load_dotenv()


def create_app(config_class=None):
    """Build and configure the Flask application."""
    if config_class is None:
        config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize CORS
    allowed_origins = app.config.get('CORS_ORIGINS', '*')
    origins = '*' if allowed_origins == '*' else [origin.strip() for origin in allowed_origins.split(',')]
    CORS(app, resources={
        r"/*": {
            "origins": origins,
            "methods": ["GET", "POST", "DELETE", "OPTIONS"],
            "allow_headers": [
                "Content-Type",
                "X-API-KEY",
                config_class.KYC_SIGNATURE_HEADER
            ]
        }
    })

    # Initialize database
    init_db(app)

    logging.basicConfig(
        level=getattr(logging, config_class.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        filename=config_class.LOG_FILE,
    )
    logging.info(
        "Governance Service starting (env: %s)",
        os.environ.get("FLASK_ENV", "development")
    )

    # Register blueprints
    app.register_blueprint(governance_bp)
    app.register_blueprint(kyc_bp)
    app.register_blueprint(admin_bp)

    @app.route("/health")
    def health():
        return jsonify({
            'status': 'ok',
            'service': config_class.APP_NAME,
            'version': config_class.APP_VERSION
        }), 200

    # Add security headers to all responses
    @app.after_request
    def after_request(response):
        return add_security_headers(response)

    return app


app = create_app()


# This block allows the app to be run directly for development purposes
if __name__ == "__main__":
    app.run(host=app.config['HOST'], port=app.config['PORT'])
