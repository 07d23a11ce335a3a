from functools import wraps
from flask import request, jsonify, g, current_app
from notifier import firestore_dao as dao
from notifier.errors import AuthorizationError
from notifier.firebase_init import get_auth
from notifier.firestore_models import User, SUPERVISOR_ROLES


def get_engine():
    return current_app.extensions['notifier']


def _verify_token(id_token):
    """Decode a Firebase ID token. Raises on an invalid or expired token."""
    return get_auth().verify_id_token(id_token)


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def load_operator():
    """Resolve the calling operator or raise AuthorizationError."""
    id_token = _bearer_token()
    if not id_token:
        raise AuthorizationError('Missing bearer token', status=401)
    try:
        decoded = _verify_token(id_token)
    except Exception:
        current_app.logger.warning('Rejected operator token', exc_info=True)
        raise AuthorizationError('Invalid ID token', status=401)

    uid = decoded.get('uid') or decoded.get('user_id')
    user_doc = dao.get_user(get_engine().store, uid) if uid else None
    if not user_doc:
        raise AuthorizationError('Unknown user', status=403)
    user = User.from_dict(user_doc, uid)
    if not user.has_role(*SUPERVISOR_ROLES):
        raise AuthorizationError('Insufficient permissions', status=403)
    return user


def operator_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            g.current_user = load_operator()
        except AuthorizationError as exc:
            return jsonify({'error': str(exc)}), exc.status
        return f(*args, **kwargs)
    return decorated
