# election_core/__init__.py

import logging
from collections.abc import Mapping

from flask import Flask, jsonify
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from werkzeug.middleware.proxy_fix import ProxyFix

from election_core.config import config_from_env

db = SQLAlchemy()  # Database ORM
migrate = Migrate()  # DB migrations
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)


@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    return jsonify({"success": False, "errorCode": "TOKEN_EXPIRED", "message": "Token has expired"}), 401


@jwt.unauthorized_loader
def missing_token_callback(reason):
    return jsonify({"success": False, "errorCode": "UNAUTHORIZED", "message": reason}), 401


@jwt.invalid_token_loader
def invalid_token_callback(reason):
    return jsonify({"success": False, "errorCode": "UNAUTHORIZED", "message": reason}), 401


def create_app(config=None, clock=None):
    """Build the Flask app.

    ``config`` is a config class, a mapping of overrides applied on top of the
    environment-selected class, or None.
    """
    app = Flask(__name__)
    if config is None or isinstance(config, Mapping):
        app.config.from_object(config_from_env())
        if config:
            app.config.update(config)
    else:
        app.config.from_object(config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Fix proxy headers for HTTPS
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Ensure model modules are imported so SQLAlchemy metadata is populated
    from election_core.audit.audit_logger import AuditLogger
    from election_core.cache import TTLCache
    from election_core.clock import SystemClock
    from election_core.database import models  # noqa: F401
    from election_core import reference  # noqa: F401  registers cache invalidation hooks
    from election_core.routes import api, register_error_handlers, token_manager

    app.extensions['election_clock'] = clock or SystemClock()
    app.extensions['reference_cache'] = TTLCache(ttl_seconds=app.config['REFERENCE_CACHE_TTL'])
    app.extensions['audit_logger'] = AuditLogger(
        log_dir=app.config['AUDIT_LOG_DIR'],
        signing_key_pem=app.config.get('AUDIT_SIGNING_KEY'),
    )

    token_manager.init_app(app)
    app.register_blueprint(api, url_prefix='/api')
    register_error_handlers(app)

    if app.config['AUTO_CREATE_SCHEMA']:
        with app.app_context():
            db.create_all()

    return app
