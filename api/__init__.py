from flask import Flask
from flasgger import Swagger
from flask_cors import CORS

from .config import get_config
from .errors import register_error_handlers
from .commands import register_commands
from models import DBStorage
from services.notifier import notifier_from_config
from services.oauth import providers_from_config
from services.orchestrator import AuthOrchestrator
from services.settings import AuthSettings
from utils.security import PasswordHasher

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "Campground Auth API",
        "version": "1.0.0",
        "description": "Registration, login, token rotation and revocation, email verification, "
                       "password reset, two-factor authentication and OAuth login.",
    },
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}


def create_app(config_name: str | None = None, config_overrides: dict | None = None,
               notifier=None, oauth_providers=None) -> Flask:
    """
    Application factory: creates and configures the Flask app.

    The credential store, password hasher, notifier and OAuth providers are built
    here and passed into the AuthOrchestrator; tests inject their own notifier and
    providers through the keyword arguments.
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))
    if config_overrides:
        app.config.update(config_overrides)

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    # Register global error handlers that return the uniform error envelope
    register_error_handlers(app)
    register_commands(app)

    storage = DBStorage(app.config["DATABASE_URL"], echo=app.config.get("SQL_ECHO", False))
    storage.reload()

    hasher = PasswordHasher(
        time_cost=app.config["ARGON2_TIME_COST"],
        memory_cost=app.config["ARGON2_MEMORY_COST"],
        parallelism=app.config["ARGON2_PARALLELISM"],
    )
    auth = AuthOrchestrator(
        storage=storage,
        settings=AuthSettings.from_config(app.config),
        hasher=hasher,
        notifier=notifier if notifier is not None else notifier_from_config(app.config),
        oauth_providers=oauth_providers if oauth_providers is not None else providers_from_config(app.config),
    )
    app.extensions["storage"] = storage
    app.extensions["auth"] = auth

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .two_factor import bp as two_factor_bp

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(two_factor_bp, url_prefix="/api/v1/2fa")

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        # This calls scoped_session.remove(), preventing connection leaks
        storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Welcome to the Campground Auth API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
