#!/usr/bin/env python3
"""
Reconciliation back office - Flask application
Serves the analysis API over the tenant's sales, SAP and bank data
"""

import os
import logging
from datetime import datetime

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from backoffice.config import MatchingConfig
from backoffice.database import DatabaseManager

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(db_manager: DatabaseManager = None, matching_config: MatchingConfig = None) -> Flask:
    """Build the Flask app; tests pass their own database manager"""
    app = Flask(__name__)

    # Configure Flask secret key for sessions
    app.secret_key = os.getenv('FLASK_SECRET_KEY', 'dev-secret-key-reconciliation-backoffice')
    app.config['MAX_CONTENT_LENGTH'] = 50 * 1024 * 1024  # 50MB, daily sheets for a whole year
    app.config['DB_MANAGER'] = db_manager or DatabaseManager()
    app.config['MATCHING_CONFIG'] = matching_config or MatchingConfig.from_env()

    app.config['DB_MANAGER'].init_database()

    from api.analysis_routes import analysis_bp
    app.register_blueprint(analysis_bp)
    logger.info(f"Registered analysis blueprint with url_prefix: {analysis_bp.url_prefix}")

    @app.route('/health')
    def health_check():
        """Health check endpoint that returns application and database status"""
        try:
            health_response = {
                "status": "healthy",
                "application": "running",
                "db_type": app.config['DB_MANAGER'].db_type,
                "timestamp": datetime.now().isoformat(),
            }

            # Database check is opt-in to keep the probe fast
            if request.args.get('check_db', '').lower() == 'true':
                health_response["database"] = app.config['DB_MANAGER'].health_check()
            else:
                health_response["database"] = "skipped"

            return jsonify(health_response), 200

        except Exception as e:
            return jsonify({
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now().isoformat()
            }), 500

    return app


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5001))
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    print(f"Starting reconciliation back office on port {port}")
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
