from flask import Blueprint, request, jsonify, g

from models.user import User
from security.csrf import issue_csrf_token
from security.password import verify_password
from security.session import cookie_name, end_session, set_session_cookie, start_session
from utils.audit import log_event
from utils.auth_context import login_required

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _user_json(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "roles": [r.name for r in user.roles],
        "provider_id": user.provider.id if user.provider else None,
    }


# ---------- PROVIDERS / ADMINS: cookie session login ----------
@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password, user.password_hash):
        log_event("LOGIN_FAIL", user_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    resp = jsonify(message="Logged in", user=_user_json(user))
    set_session_cookie(resp, start_session(user.id))
    issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", user_id=user.id)
    return resp, 200


@auth_bp.post("/logout")
@login_required
def logout():
    end_session(request.cookies.get(cookie_name()))
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name(), path="/")
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(_user_json(g.user)), 200
