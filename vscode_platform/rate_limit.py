import math
import time
import logging
from functools import wraps

from flask import request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from vscode_platform.config import app_config
from vscode_platform.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window counters keyed by an arbitrary string; expired windows are dropped by the storage"""

    def __init__(self, storage=None):
        self.storage = storage or MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)

    def check(self, key, max_requests, window_seconds, message='Too many requests, please try again later'):
        """Count a hit for key, raising RateLimitError once the window is full"""
        item = RateLimitItemPerSecond(max_requests, window_seconds)
        if self.strategy.hit(item, key):
            return

        stats = self.strategy.get_window_stats(item, key)
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        logger.warning(f"Rate limit exceeded for {key}")
        raise RateLimitError(message, retry_after=retry_after)

    def reset(self):
        self.storage.reset()


limiter = RateLimiter()


def client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or 'unknown'


def user_key(current_user, view_kwargs):
    return current_user.id


def group_user_key(current_user, view_kwargs):
    group_id = view_kwargs.get('group_id')
    if not group_id:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            group_id = body.get('group_id')
    return f"{group_id or 'none'}:{current_user.id}"


def check_global_rate_limit():
    """Per-IP limit for every /api request"""
    if not app_config.RATE_LIMIT_ENABLED or not request.path.startswith('/api'):
        return
    limiter.check(
        f"global:{client_ip()}",
        app_config.RATE_LIMIT_MAX_REQUESTS,
        app_config.RATE_LIMIT_WINDOW_SECONDS,
    )


def rate_limit(max_requests, window_seconds, scope, key=user_key, skip_admins=True, message=None):
    """Limit an authenticated view; must be applied below token_required"""
    def decorator(f):
        @wraps(f)
        def decorated(current_user, *args, **kwargs):
            if app_config.RATE_LIMIT_ENABLED and not (skip_admins and current_user.is_admin):
                limiter.check(
                    f"{scope}:{key(current_user, kwargs)}",
                    max_requests,
                    window_seconds,
                    message or 'Too many requests, please try again later',
                )
            return f(current_user, *args, **kwargs)
        return decorated
    return decorator


create_workspace_limit = rate_limit(
    5, 5 * 60, 'create-workspace', key=group_user_key,
    message='Too many workspace creation requests, please try again later'
)
delete_workspace_limit = rate_limit(
    app_config.RATE_LIMIT_WORKSPACE_MAX, 10 * 60, 'delete-workspace', key=group_user_key,
    message='Too many workspace deletion requests, please try again later'
)
workspace_action_limit = rate_limit(
    20, 60, 'workspace-action',
    message='Too many workspace actions, please slow down'
)
create_group_limit = rate_limit(
    2, 10 * 60, 'create-group', skip_admins=False,
    message='Too many group creation requests, please try again later'
)


def admin_limit(f):
    """Admin endpoints share one budget per admin user"""
    return rate_limit(
        50, app_config.RATE_LIMIT_WINDOW_SECONDS, 'admin', skip_admins=False,
        message='Too many admin requests, please try again later'
    )(f)
