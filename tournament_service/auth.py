from functools import wraps
from typing import Optional

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from shared.errors import Forbidden, Unauthorized


def _serializer(secret_key: str, salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=salt)


def issue_token(secret_key: str, user_id: str, username: str, role: str = 'user',
                salt: str = 'access-token') -> str:
    """Sign an access token the way the auth service does."""
    return _serializer(secret_key, salt).dumps({
        'user_id': str(user_id),
        'username': username,
        'role': role
    })


def verify_token(token: str, secret_key: str, max_age: int, salt: str = 'access-token') -> dict:
    try:
        payload = _serializer(secret_key, salt).loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthorized("Access token expired")
    except BadSignature:
        raise Unauthorized("Invalid access token")

    if not isinstance(payload, dict) or not payload.get('user_id'):
        raise Unauthorized("Invalid access token")
    return payload


def _bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def require_auth(role: str = None):
    """Require a valid bearer token; with ``role`` also require that role."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            token = _bearer_token()
            if token is None:
                raise Unauthorized("Access token required")

            principal = verify_token(
                token,
                current_app.config['SECRET_KEY'],
                current_app.config['TOKEN_MAX_AGE'],
                current_app.config['TOKEN_SALT']
            )
            if role and principal.get('role') != role:
                raise Forbidden(f"{role.capitalize()} access required")

            g.principal = principal
            return view(*args, **kwargs)
        return wrapped
    return decorator
