from flask import Flask, jsonify
from flask.logging import default_handler
from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash
import logging
import os

from models import db, ensure_bracket_locks, ensure_schema_integrity
from errors import TournamentError, InternalError, ResourceBusyError
from blueprints.auth import auth_bp, load_current_role
from blueprints.students import students_bp
from blueprints.teams import teams_bp
from blueprints.brackets import brackets_bp
from services.transactions import is_busy_error

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


def _default_database_uri() -> str:
    """DATABASE_URL when set, otherwise a local SQLite file."""
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        # Heroku PostgreSQL URL fix (postgres:// → postgresql://)
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        return database_url

    default_sqlite_dir = os.path.join(BASE_DIR, 'instance')
    os.makedirs(default_sqlite_dir, exist_ok=True)
    sqlite_path = os.environ.get('SQLITE_PATH', os.path.join(default_sqlite_dir, 'sportsday.db'))
    return f'sqlite:///{sqlite_path}'


def _engine_options(config) -> dict:
    """Bound every blocking point: pool checkout and lock waits."""
    options = {'pool_pre_ping': True}
    if config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        options['connect_args'] = {'timeout': config['LOCK_TIMEOUT_SECONDS']}
        return options

    options.update(
        pool_recycle=300,
        pool_size=config['DB_POOL_SIZE'],
        max_overflow=config['DB_MAX_OVERFLOW'],
        pool_timeout=config['DB_POOL_TIMEOUT'],
    )
    return options


def configure_logging(app):
    level = app.config.get('LOG_LEVEL', 'INFO')
    app.logger.setLevel(level)
    services_logger = logging.getLogger('services')
    services_logger.setLevel(level)
    if default_handler not in services_logger.handlers:
        services_logger.addHandler(default_handler)


def register_error_handlers(app):
    @app.errorhandler(TournamentError)
    def handle_tournament_error(error):
        payload = error.to_dict()
        if isinstance(error, InternalError):
            app.logger.error('Internal error: %s', error.detail or error.message)
            if app.config.get('EXPOSE_ERROR_DETAIL') and error.detail:
                payload['detail'] = error.detail
        elif error.retryable:
            app.logger.warning('%s: %s', error.code, error.message)

        response = jsonify(payload)
        response.status_code = error.status_code
        if isinstance(error, ResourceBusyError):
            response.headers['Retry-After'] = str(app.config.get('RETRY_AFTER_SECONDS', 1))
        return response

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(error):
        # Reads run outside atomic(), so their store failures arrive here untranslated.
        db.session.rollback()
        if isinstance(error, PoolTimeoutError) or (
            isinstance(error, OperationalError) and is_busy_error(error)
        ):
            app.logger.warning('Request timed out waiting for the database: %s', error)
            return handle_tournament_error(ResourceBusyError())
        app.logger.exception('Database error: %s', error)
        return handle_tournament_error(InternalError(detail=str(error)))

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        response = jsonify({
            'success': False,
            'error': error.description,
            'code': error.name.lower().replace(' ', '_'),
            'retryable': False,
        })
        response.status_code = error.code
        return response

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        app.logger.exception('Unhandled error: %s', error)
        payload = InternalError().to_dict()
        if app.config.get('EXPOSE_ERROR_DETAIL'):
            payload['detail'] = str(error)
        return jsonify(payload), 500


def create_app(config_overrides=None):
    """Build the application and open its database store."""
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'sportsday')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['DB_POOL_SIZE'] = int(os.environ.get('DB_POOL_SIZE', 20))
    app.config['DB_MAX_OVERFLOW'] = int(os.environ.get('DB_MAX_OVERFLOW', 10))
    app.config['DB_POOL_TIMEOUT'] = float(os.environ.get('DB_POOL_TIMEOUT', 30))
    app.config['LOCK_TIMEOUT_SECONDS'] = float(os.environ.get('LOCK_TIMEOUT_SECONDS', 10))
    app.config['ADMIN_PASSWORD'] = os.environ.get('ADMIN_PASSWORD')
    app.config['EXPOSE_ERROR_DETAIL'] = _env_flag('EXPOSE_ERROR_DETAIL')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')

    if config_overrides:
        app.config.update(config_overrides)

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        app.config['SQLALCHEMY_DATABASE_URI'] = _default_database_uri()
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', _engine_options(app.config))

    configure_logging(app)

    admin_password = app.config.pop('ADMIN_PASSWORD', None)
    if admin_password:
        app.config['ADMIN_PASSWORD_HASH'] = generate_password_hash(admin_password)
    elif not app.config.get('ADMIN_PASSWORD_HASH'):
        app.logger.warning('ADMIN_PASSWORD is not set; admin login is disabled')

    db.init_app(app)

    with app.app_context():
        db.create_all()
        ensure_schema_integrity()
        ensure_bracket_locks()
        app.logger.info('Database initialized successfully')

    app.register_blueprint(auth_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(teams_bp)
    app.register_blueprint(brackets_bp)

    app.before_request(load_current_role)
    register_error_handlers(app)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'message': 'Server is running'})

    return app


def dispose_store(app):
    """Close every pooled connection. Call once at shutdown."""
    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    app.logger.info('Database connections closed')


if __name__ == "__main__":
    application = create_app()
    try:
        application.run(debug=_env_flag('FLASK_DEBUG'), port=int(os.environ.get('PORT', 5000)))
    finally:
        dispose_store(application)
