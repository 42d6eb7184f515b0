"""Flask application factory."""
from flask import Flask, request, jsonify, redirect
from flask_wtf.csrf import CSRFProtect
from werkzeug.exceptions import HTTPException
from storefront.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize CSRF protection
    csrf = CSRFProtect(app)

    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        if request.path == '/checkout':
            return redirect('/cart?error=form')
        return jsonify({'success': False, 'error': 'Session expired, reload the page.'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for order emails
    from storefront.services.email_service import init_mail
    init_mail(app)

    # Redis cache for catalog reads
    from storefront.services.cache_service import init_cache
    init_cache(app)

    # Hosted payment provider
    from storefront.services.payment_provider import init_payment_provider
    init_payment_provider(app)

    # Prometheus instrumentation
    from storefront.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1,
            x_proto=1,
            x_host=1,
            x_port=1,
            x_prefix=0
        )

    # Initialize database
    init_db(app)

    # Error Handlers
    from storefront.exceptions import StorefrontError

    @app.errorhandler(StorefrontError)
    def handle_storefront_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"StorefrontError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"StorefrontError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({'success': False, 'error': error.description}), error.code

    @app.errorhandler(500)
    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'success': False, 'error': 'Internal Server Error'}), 500

    # Register blueprints
    from storefront.blueprints.main import main_bp
    from storefront.blueprints.metrics import metrics_bp
    from storefront.blueprints.catalog_api import catalog_api_bp
    from storefront.blueprints.cart_api import cart_api_bp
    from storefront.blueprints.checkout import checkout_bp
    from storefront.blueprints.admin import admin_bp
    from storefront.blueprints.webhooks import webhooks_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(admin_bp)

    # The cart widget API and webhooks are exempt from CSRF
    csrf.exempt(catalog_api_bp)
    csrf.exempt(cart_api_bp)
    csrf.exempt(webhooks_bp)
    app.register_blueprint(catalog_api_bp)
    app.register_blueprint(cart_api_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from storefront.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"MAIL_DEFAULT_SENDER={app.config.get('MAIL_DEFAULT_SENDER')}")

    return app
