from functools import wraps
from flask import g, jsonify
from models import db
from models.user import User
from security.session import current_session


def load_current_user():
    """Populate g.user / g.session from the session cookie; both None for guests."""
    sess = current_session()
    g.session = sess
    g.user = db.session.get(User, sess.user_id) if sess else None


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
