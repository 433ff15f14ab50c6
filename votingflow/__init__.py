# votingflow/__init__.py

import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_jwt_extended import JWTManager
from werkzeug.middleware.proxy_fix import ProxyFix

from votingflow.config import Config

# Extensions are bound to an application in create_app()
db = SQLAlchemy()  # Account storage
migrate = Migrate()  # DB migrations
jwt = JWTManager()  # Caller identity
limiter = Limiter(key_func=get_remote_address, default_limits=["10000/hour"])


@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    return jsonify({"error": "token_expired", "message": "Token has expired"}), 401


@jwt.unauthorized_loader
def missing_token_callback(reason):
    return jsonify({"error": "not_authenticated", "message": reason}), 401


@jwt.invalid_token_loader
def invalid_token_callback(reason):
    return jsonify({"error": "invalid_token", "message": reason}), 401


def create_app(config=None, audit_logger=None):
    """Build the API around one in-memory voting session."""
    from votingflow.audit.audit_logger import AuditLogger
    from votingflow.workflow.session import VotingSession

    app = Flask(__name__)
    app.config.from_object(config or Config)
    app.logger.setLevel(app.config['LOG_LEVEL'])
    logging.getLogger('votingflow').setLevel(app.config['LOG_LEVEL'])

    # Fix proxy headers for HTTPS
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    if audit_logger is None:
        audit_logger = AuditLogger(log_dir=app.config['AUDIT_LOG_DIR'])
    session = VotingSession(administrator=app.config['ADMIN_IDENTITY'], listeners=[audit_logger])
    app.extensions['audit_logger'] = audit_logger
    app.extensions['voting_session'] = session

    # Model modules must be imported so SQLAlchemy metadata is populated
    from votingflow.database import models  # noqa: F401
    from votingflow.routes import api, token_manager
    from votingflow.cli import register_commands

    token_manager.init_app(app)
    app.register_blueprint(api)
    register_commands(app)

    with app.app_context():
        db.create_all()

    app.logger.info("Voting session ready, administrator %s", session.administrator)
    return app
