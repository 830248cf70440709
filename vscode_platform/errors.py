class AppError(Exception):
    """Base class for errors that map onto an HTTP response"""

    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message, status_code=None, code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self):
        body = {'message': self.message, 'code': self.code}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = 'VALIDATION_ERROR'


class AuthenticationError(AppError):
    status_code = 401
    code = 'AUTHENTICATION_ERROR'

    def __init__(self, message='Authentication required', details=None):
        super().__init__(message, details=details)


class AuthorizationError(AppError):
    status_code = 403
    code = 'AUTHORIZATION_ERROR'

    def __init__(self, message='Insufficient permissions', details=None):
        super().__init__(message, details=details)


class NotFoundError(AppError):
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, message='Resource not found', details=None):
        super().__init__(message, details=details)


class ConflictError(AppError):
    status_code = 409
    code = 'CONFLICT'


class RateLimitError(AppError):
    status_code = 429
    code = 'RATE_LIMIT_EXCEEDED'

    def __init__(self, message='Rate limit exceeded', retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after


class KubernetesError(AppError):
    status_code = 500
    code = 'KUBERNETES_ERROR'


class DatabaseError(AppError):
    status_code = 500
    code = 'DATABASE_ERROR'
