from datetime import datetime
from pathlib import Path

from flask import Flask, g, jsonify, request
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()

from .config import Config


def _extract_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def create_app(config_class: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    config = config_class or Config
    app.config.from_object(config)

    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if db_uri:
        try:
            url = make_url(db_uri)
        except ArgumentError:
            url = None
        if url and url.drivername == "sqlite" and url.database and url.database != ":memory:":
            db_path = Path(url.database)
            if not db_path.is_absolute():
                db_path = Path(app.root_path) / db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    from .models import AuthToken, User

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        try:
            identity = int(user_id)
        except (ValueError, TypeError):
            return None
        return db.session.get(User, identity)

    @login_manager.request_loader
    def load_user_from_request(_request) -> User | None:
        token_value = _extract_token()
        if not token_value:
            return None
        token = AuthToken.query.filter_by(token=token_value, revoked=False).first()
        if not token or token.expires_at <= datetime.utcnow():
            return None
        g.current_token = token
        return token.user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Unauthorized", "redirectUrl": "/login"}), 401

    from .api import api_bp

    app.register_blueprint(api_bp)

    @app.get("/")
    def index():
        return jsonify({"service": "examprep", "api": "/api"})

    return app
