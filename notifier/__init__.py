from flask import Flask
from flask_wtf.csrf import CSRFProtect
from config import Config

csrf = CSRFProtect()


def create_app(config_class=Config, engine=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    from notifier.logging_config import configure_logging
    configure_logging(app.config.get('LOG_LEVEL'))

    csrf.init_app(app)

    # Build the dispatch engine against Firebase unless one was injected
    if engine is None:
        from notifier.engine import create_engine
        engine = create_engine(app.config)
    app.extensions['notifier'] = engine

    # Register blueprints
    from notifier.routes import admin, main
    app.register_blueprint(main.bp)
    app.register_blueprint(admin.bp)
    # Operator endpoints authenticate with bearer tokens, not session cookies
    csrf.exempt(admin.bp)

    from notifier.cli import register_cli
    register_cli(app)

    return app
