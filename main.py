"""
EcoQuest Progression Engine - Main Flask Application
Competitions, challenges and daily missions over a shared reward ledger
"""

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from pydantic import ValidationError as PayloadError
from werkzeug.exceptions import HTTPException
import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from logging_config import setup_logging
setup_logging()

# Import models and routes
from models import db
from errors import EngineError, engine_error_response, validation_error, create_error_response
from competition_routes import competitions_bp
from challenge_routes import challenges_bp
from mission_routes import missions_bp
from activity_routes import activity_bp, cron_bp

logger = logging.getLogger('App')


def create_app(test_config=None):
    """Application factory pattern"""
    app = Flask(__name__)

    # Configuration - Load from environment variables
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY')
    app.config['JWT_SECRET'] = os.environ.get('JWT_SECRET')

    # Database Configuration
    # Use SQLite for development, PostgreSQL for production
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        # Handle Heroku-style postgres:// URLs
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    else:
        db_path = os.path.join(os.path.dirname(__file__), 'ecoquest.db')
        app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{db_path}'

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SQLALCHEMY_ECHO'] = os.environ.get('SQL_DEBUG', 'false').lower() == 'true'

    app.config['UPLOAD_FOLDER'] = os.environ.get(
        'UPLOAD_FOLDER', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'uploads')
    )
    app.config['MAX_CONTENT_LENGTH'] = 5 * 1024 * 1024  # 5MB proof images
    app.config['ADMIN_CRON_KEY'] = os.environ.get('ADMIN_CRON_KEY', 'dev-cron-key')

    if test_config:
        app.config.update(test_config)

    if not app.config['SECRET_KEY']:
        raise ValueError("SECRET_KEY environment variable is required! Check your .env file.")
    if not app.config['JWT_SECRET']:
        raise ValueError("JWT_SECRET environment variable is required! Check your .env file.")

    # Configure CORS with specific allowed origins
    cors_origins = os.environ.get('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000')
    allowed_origins = [origin.strip() for origin in cors_origins.split(',') if origin.strip()]
    CORS(app, resources={r"/api/*": {"origins": allowed_origins}}, supports_credentials=True)
    db.init_app(app)

    # Register blueprints
    app.register_blueprint(competitions_bp)
    app.register_blueprint(challenges_bp)
    app.register_blueprint(missions_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(cron_bp)

    # Error handlers
    @app.errorhandler(EngineError)
    def engine_error(error):
        db.session.rollback()
        return engine_error_response(error)

    @app.errorhandler(PayloadError)
    def payload_error(error):
        db.session.rollback()
        details = [{'field': '.'.join(str(part) for part in e['loc']), 'message': e['msg']}
                   for e in error.errors()]
        return validation_error('Invalid request payload', details)

    @app.errorhandler(404)
    def not_found(error):
        return create_error_response('NOT_FOUND', status_code=404)

    @app.errorhandler(Exception)
    def unhandled_error(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.critical(f"Unhandled error: {error}", exc_info=True)
        return create_error_response('SERVER_ERROR', status_code=500)

    @app.route('/uploads/<path:filename>')
    def uploaded_file(filename):
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename)

    # Root endpoint
    @app.route('/')
    def index():
        return jsonify({
            'name': 'EcoQuest API',
            'version': '1.0.0',
            'description': 'Competitions, challenges and daily missions',
            'endpoints': {
                'competitions': '/api/competitions',
                'challenges': '/api/challenges',
                'missions': '/api/missions',
                'activity': '/api/activity'
            }
        })

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables"""
        init_database(app)
        print("✓ Database initialized")

    return app


def init_database(app):
    """Initialize database with tables"""
    with app.app_context():
        db.create_all()


# ==================== MAIN ====================

if __name__ == '__main__':
    app = create_app()
    init_database(app)

    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', 'true').lower() == 'true'

    print(f"""
╔════════════════════════════════════════════════════════════════╗
║                    ECOQUEST API SERVER                         ║
║────────────────────────────────────────────────────────────────║
║  🚀 Server running on: http://localhost:{port:<23}║
║  🔒 Debug Mode: {str(debug).upper():<47}║
╚════════════════════════════════════════════════════════════════╝
    """)

    app.run(host='0.0.0.0', port=port, debug=debug)
