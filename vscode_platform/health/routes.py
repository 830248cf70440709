import logging
import time
from flask import Blueprint, jsonify
from vscode_platform.config import app_config
from vscode_platform.k8s.service import kubernetes_service
from vscode_platform.storage.dynamodb import dynamodb_service
from vscode_platform.utils.timestamps import utc_now_iso

logger = logging.getLogger(__name__)
health_bp = Blueprint('health', __name__)

STARTED_AT = time.monotonic()


def _status(ok):
    return 'healthy' if ok else 'unhealthy'


def _elapsed_ms(start):
    return round((time.monotonic() - start) * 1000, 2)


@health_bp.route('', methods=['GET'])
def health():
    """Basic health check of the database and the cluster"""
    dependencies = {
        'database': _status(dynamodb_service.health_check()),
        'kubernetes': _status(kubernetes_service.health_check()),
    }
    healthy = all(s == 'healthy' for s in dependencies.values())

    return jsonify({
        'status': _status(healthy),
        'timestamp': utc_now_iso(),
        'version': app_config.VERSION,
        'environment': app_config.APP_ENV,
        'dependencies': dependencies,
    }), 200 if healthy else 503


@health_bp.route('/detailed', methods=['GET'])
def detailed_health():
    started = time.monotonic()

    db_start = time.monotonic()
    db_healthy = dynamodb_service.health_check()
    database = {'status': _status(db_healthy), 'response_time_ms': _elapsed_ms(db_start)}

    k8s_start = time.monotonic()
    try:
        namespaces = kubernetes_service.list_namespaces()
        kubernetes = {
            'status': 'healthy',
            'response_time_ms': _elapsed_ms(k8s_start),
            'namespaces_count': len(namespaces),
        }
    except Exception as e:
        logger.error(f"Detailed Kubernetes health check failed: {e}")
        kubernetes = {'status': 'unhealthy', 'response_time_ms': None, 'namespaces_count': None}

    healthy = database['status'] == 'healthy' and kubernetes['status'] == 'healthy'
    return jsonify({
        'status': _status(healthy),
        'timestamp': utc_now_iso(),
        'version': app_config.VERSION,
        'environment': app_config.APP_ENV,
        'uptime_seconds': round(time.monotonic() - STARTED_AT, 2),
        'dependencies': {
            'database': database,
            'kubernetes': kubernetes,
        },
        'total_time_ms': _elapsed_ms(started),
    }), 200 if healthy else 503


@health_bp.route('/live', methods=['GET'])
def live():
    return jsonify({'status': 'alive', 'timestamp': utc_now_iso()})


@health_bp.route('/ready', methods=['GET'])
def ready():
    if dynamodb_service.health_check() and kubernetes_service.health_check():
        return jsonify({'status': 'ready', 'timestamp': utc_now_iso()})
    return jsonify({'status': 'not ready', 'timestamp': utc_now_iso()}), 503
