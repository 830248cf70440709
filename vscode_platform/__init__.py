import logging
from botocore.exceptions import ClientError
from flask import Flask, jsonify, request
from flask_cors import CORS
from kubernetes.client.rest import ApiException
from werkzeug.exceptions import HTTPException
from vscode_platform.config import app_config
from vscode_platform.errors import AppError, RateLimitError
from vscode_platform.rate_limit import check_global_rate_limit

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(e):
        if e.status_code >= 500:
            logger.error(f"{e.code}: {e.message} {e.details or ''}")
        else:
            logger.warning(f"{e.code}: {e.message} ({request.method} {request.path})")
        response = jsonify(e.to_dict())
        response.status_code = e.status_code
        if isinstance(e, RateLimitError) and e.retry_after is not None:
            response.headers['Retry-After'] = str(e.retry_after)
        return response

    @app.errorhandler(ApiException)
    def handle_kubernetes_error(e):
        logger.error(f"Kubernetes API error: {e.status} {e.reason}")
        return jsonify({'message': 'Kubernetes operation failed', 'code': 'KUBERNETES_ERROR'}), 500

    @app.errorhandler(ClientError)
    def handle_database_error(e):
        logger.error(f"DynamoDB error: {e}")
        return jsonify({'message': 'Database operation failed', 'code': 'DATABASE_ERROR'}), 500

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'message': f"Route {request.method} {request.path} not found", 'code': 'NOT_FOUND'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'message': 'Method not allowed', 'code': 'METHOD_NOT_ALLOWED'}), 405

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({'message': e.description, 'code': 'HTTP_ERROR'}), e.code
        logger.error(f"Unhandled exception: {e}", exc_info=True)
        message = str(e) if app_config.is_development else 'Internal server error'
        return jsonify({'message': message, 'code': 'INTERNAL_ERROR'}), 500


def create_app():
    app = Flask(__name__)
    CORS(app, origins=app_config.CORS_ORIGINS, supports_credentials=True)

    # Register blueprints
    from vscode_platform.admin.routes import admin_bp
    from vscode_platform.auth.routes import auth_bp
    from vscode_platform.dashboard.routes import dashboard_bp
    from vscode_platform.group.routes import group_bp
    from vscode_platform.health.routes import health_bp
    from vscode_platform.workspace.routes import workspace_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(group_bp, url_prefix='/api/groups')
    app.register_blueprint(workspace_bp, url_prefix='/api/workspaces')
    app.register_blueprint(dashboard_bp, url_prefix='/api/dashboard')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(health_bp, url_prefix='/api/health')

    app.before_request(check_global_rate_limit)

    @app.after_request
    def log_request(response):
        logger.info(f"{request.method} {request.path} {response.status_code} {request.remote_addr}")
        return response

    @app.route('/')
    def root():
        return jsonify({
            'service': 'vscode-platform',
            'version': app_config.VERSION,
            'status': 'running',
            'endpoints': {
                'health': '/api/health',
                'auth': '/api/auth',
                'groups': '/api/groups',
                'workspaces': '/api/workspaces',
                'dashboard': '/api/dashboard',
                'admin': '/api/admin',
            }
        })

    register_error_handlers(app)
    return app
