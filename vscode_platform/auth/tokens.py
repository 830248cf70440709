import logging

import jwt
from jwt import PyJWKClient

from vscode_platform.config import app_config
from vscode_platform.errors import AuthenticationError

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")


class TokenVerifier:
    """Verifies ID tokens issued by Cognito or Google"""

    def __init__(self, config=None):
        self.config = config or app_config
        self._cognito_jwks = None
        self._google_jwks = None

    @property
    def cognito_issuer(self):
        return (f"https://cognito-idp.{self.config.AWS_REGION}.amazonaws.com/"
                f"{self.config.COGNITO_USER_POOL_ID}")

    def _cognito_client(self):
        if self._cognito_jwks is None:
            self._cognito_jwks = PyJWKClient(f"{self.cognito_issuer}/.well-known/jwks.json")
        return self._cognito_jwks

    def _google_client(self):
        if self._google_jwks is None:
            self._google_jwks = PyJWKClient(GOOGLE_JWKS_URL)
        return self._google_jwks

    def verify_cognito(self, token):
        if not self.config.COGNITO_USER_POOL_ID:
            raise AuthenticationError('Cognito not configured')

        try:
            signing_key = self._cognito_client().get_signing_key_from_jwt(token)
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.config.COGNITO_CLIENT_ID,
                issuer=self.cognito_issuer,
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Cognito token verification failed: {e}")
            raise AuthenticationError('Invalid Cognito token')

        if payload.get('token_use') != 'id':
            raise AuthenticationError('Invalid Cognito token')

        return {
            'sub': payload['sub'],
            'email': payload.get('email'),
            'username': payload.get('cognito:username'),
            'name': payload.get('name'),
            'groups': payload.get('cognito:groups') or [],
            'iat': payload.get('iat'),
            'exp': payload.get('exp'),
        }

    def verify_google(self, token):
        if not self.config.GOOGLE_CLIENT_ID:
            raise AuthenticationError('Google sign-in not configured')

        try:
            signing_key = self._google_client().get_signing_key_from_jwt(token)
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.config.GOOGLE_CLIENT_ID,
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Google token verification failed: {e}")
            raise AuthenticationError('Invalid Google token')

        if payload.get('iss') not in GOOGLE_ISSUERS:
            raise AuthenticationError('Invalid Google token')

        return {
            'sub': payload['sub'],
            'email': payload.get('email'),
            'username': None,
            'name': payload.get('name'),
            'groups': [],
            'iat': payload.get('iat'),
            'exp': payload.get('exp'),
        }

    def verify(self, token):
        """Verify a bearer token, trying Cognito first and then Google"""
        try:
            return self.verify_cognito(token)
        except AuthenticationError:
            pass

        try:
            return self.verify_google(token)
        except AuthenticationError:
            raise AuthenticationError('Invalid token')


token_verifier = TokenVerifier()


def verify_token(token):
    claims = token_verifier.verify(token)
    if not claims.get('email'):
        raise AuthenticationError('Token has no email claim')
    return claims
