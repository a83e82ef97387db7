"""
Vending Service — Flask application
Buyers deposit coins and buy products; sellers manage their products.
"""

import os
from flask import Flask, jsonify
from flasgger import Swagger
from dotenv import load_dotenv
from vending.extensions import BLOCKLIST, db, jwt
from vending.models import Product, User  # Register models
from vending.services.identity import resolve_identity


def _database_uri():
    if os.environ.get('DATABASE_URL'):
        return os.environ['DATABASE_URL']

    db_user = os.environ.get('DB_USER', 'vending_user')
    db_pass = os.environ.get('DB_PASS', 'password')
    db_host = os.environ.get('DB_HOST', 'vending-db')
    db_name = os.environ.get('DB_NAME', 'vending_db')
    return f"postgresql://{db_user}:{db_pass}@{db_host}/{db_name}"


def _register_jwt_callbacks():
    @jwt.token_in_blocklist_loader
    def check_if_token_in_blocklist(jwt_header, jwt_payload):
        return jwt_payload['jti'] in BLOCKLIST

    @jwt.user_lookup_loader
    def load_identity(jwt_header, jwt_payload):
        return resolve_identity(jwt_payload['sub'])

    @jwt.user_lookup_error_loader
    def unknown_user(jwt_header, jwt_payload):
        return jsonify({'error': 'User not found', 'error_code': 'UNAUTHORIZED'}), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'error': 'Token not provided', 'error_code': 'UNAUTHORIZED'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({'error': 'Invalid token', 'error_code': 'UNAUTHORIZED'}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({'error': 'Token has expired', 'error_code': 'UNAUTHORIZED'}), 401

    @jwt.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):
        return jsonify({'error': 'Token has been revoked', 'error_code': 'UNAUTHORIZED'}), 401


_register_jwt_callbacks()


def create_app(test_config=None):
    load_dotenv()
    app = Flask(__name__)

    # Configuration
    app.config['SQLALCHEMY_DATABASE_URI'] = _database_uri()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.environ.get('JWT_SECRET', 'dev-secret-change-me')
    app.config['JWT_ACCESS_MINUTES'] = int(os.environ.get('JWT_ACCESS_MINUTES', 15))
    app.config['JWT_REFRESH_DAYS'] = int(os.environ.get('JWT_REFRESH_DAYS', 7))
    app.config['LOCK_TIMEOUT_SECONDS'] = float(os.environ.get('LOCK_TIMEOUT_SECONDS', 5))
    if test_config:
        app.config.update(test_config)

    # Initialize Extensions
    db.init_app(app)
    jwt.init_app(app)

    Swagger(app, template={
        'info': {'title': 'Vending machine', 'version': '1.0.0'},
        'securityDefinitions': {
            'Bearer': {'type': 'apiKey', 'name': 'Authorization', 'in': 'header'},
        },
    })

    # Register Blueprints
    from vending.routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from vending.routes.users import user_bp
    app.register_blueprint(user_bp, url_prefix='/api/users')

    from vending.routes.products import product_bp
    app.register_blueprint(product_bp, url_prefix='/api/products')

    @app.route('/health')
    def health():
        try:
            db.session.execute(db.text('SELECT 1'))
            return {"service": "vending-service", "status": "healthy"}, 200
        except Exception as e:
            app.logger.warning('Health check failed: %s', e)
            return {"service": "vending-service", "status": "unhealthy", "error": str(e)}, 503

    with app.app_context():
        db.create_all()

    app.logger.debug(app.url_map)
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5000)
