"""
Identity provider for the EcoQuest API
JWT bearer tokens supplying the authenticated user and role
"""

from flask import request, current_app
from functools import wraps
from datetime import datetime, timedelta
import jwt

from errors import create_error_response
from models import db, User

JWT_ALGORITHM = 'HS256'
JWT_EXPIRATION_HOURS = 24 * 7  # 7 days


# ==================== JWT HELPERS ====================

def _secret():
    secret = current_app.config.get('JWT_SECRET')
    if not secret:
        raise ValueError("JWT_SECRET environment variable is required! Check your .env file.")
    return secret


def generate_token(user_id):
    """Generate a JWT token for a user"""
    payload = {
        'user_id': user_id,
        'iat': datetime.utcnow(),
        'exp': datetime.utcnow() + timedelta(hours=JWT_EXPIRATION_HOURS)
    }
    return jwt.encode(payload, _secret(), algorithm=JWT_ALGORITHM)


def decode_token(token):
    """Decode and validate a JWT token"""
    try:
        return jwt.decode(token, _secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return {'error': 'Token expired'}
    except jwt.InvalidTokenError:
        return {'error': 'Invalid token'}


def get_token_from_request():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:]
    return None


# ==================== DECORATORS ====================

def require_auth(f):
    """Decorator to require authentication for a route"""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_token_from_request()
        if not token:
            return create_error_response('UNAUTHORIZED', 'Please login to access this resource', status_code=401)

        payload = decode_token(token)
        if 'error' in payload:
            return create_error_response('UNAUTHORIZED', payload['error'], status_code=401)

        user = db.session.get(User, payload.get('user_id'))
        if not user or not user.is_active:
            return create_error_response('UNAUTHORIZED', 'User not found or inactive', status_code=401)

        request.current_user = user
        return f(*args, **kwargs)
    return decorated


def require_role(*roles):
    """Decorator to require one of the given roles; implies require_auth"""
    def decorator(f):
        @wraps(f)
        @require_auth
        def decorated(*args, **kwargs):
            if request.current_user.role not in roles:
                return create_error_response('FORBIDDEN', f"Requires role: {', '.join(roles)}", status_code=403)
            return f(*args, **kwargs)
        return decorated
    return decorator


def is_admin(user):
    return user is not None and user.role == 'admin'
