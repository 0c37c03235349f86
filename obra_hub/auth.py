from __future__ import annotations

import logging
from typing import Any, Dict, List

from flask import Blueprint, jsonify, redirect, render_template_string, request, session, url_for

from . import config, db
from .supabase_api import (
    SupabaseAuthError,
    get_user,
    invite_user_by_email,
    sign_in_with_otp,
    sign_in_with_password,
    sign_out,
    verify_otp,
)

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

PUBLIC_PREFIXES = ("/login", "/auth", "/_reactpy/assets", "/_reactpy/modules", "/favicon.ico")
ROLES = ["admin", "engineer", "user", "viewer"]
USER_STATUSES = ["active", "inactive", "invited"]
NO_SESSION_MESSAGE = "No autorizado (Sesión no encontrada)"

LOGIN_HTML = """<!doctype html>
<html lang="es">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Obra Hub · Iniciar sesión</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #0f172a; color: #e2e8f0; display: grid; place-items: center; min-height: 100vh; margin: 0; }
    form { background: #1e293b; padding: 28px; border-radius: 14px; width: min(360px, 90vw); display: grid; gap: 12px; }
    input { padding: 10px; border-radius: 8px; border: 1px solid #334155; background: #0f172a; color: inherit; }
    button { padding: 10px; border-radius: 8px; border: 0; background: #2563eb; color: white; cursor: pointer; }
    button.ghost { background: transparent; border: 1px solid #334155; }
    .error { color: #fca5a5; } .info { color: #86efac; }
  </style>
</head>
<body>
  <form method="post" action="{{ url_for('auth.login') }}">
    <h1>Obra Hub</h1>
    {% if error %}<div class="error">{{ error }}</div>{% endif %}
    {% if message %}<div class="info">{{ message }}</div>{% endif %}
    <input type="hidden" name="next" value="{{ next_url }}">
    <label>Correo <input type="email" name="email" value="{{ email }}" required></label>
    <label>Contraseña <input type="password" name="password"></label>
    <button type="submit" name="mode" value="password">Entrar</button>
    <button type="submit" name="mode" value="otp" class="ghost">Enviar enlace mágico</button>
  </form>
</body>
</html>
"""

# Implicit-flow links put tokens in the URL fragment, which only the browser sees.
CALLBACK_HTML = """<!doctype html>
<html><body><script>
  var params = new URLSearchParams(window.location.hash.slice(1));
  if (params.get('access_token')) {
    window.location.replace('/auth/callback?' + params.toString());
  } else {
    window.location.replace('/login?error=callback');
  }
</script></body></html>
"""


def is_public_path(path: str) -> bool:
    return path.startswith(PUBLIC_PREFIXES)


def current_user() -> Dict[str, Any] | None:
    return session.get("user")


def _load_profile(user_id: str) -> Dict[str, Any] | None:
    try:
        return db.fetch_one("SELECT * FROM profiles WHERE id = %s", (user_id,))
    except Exception:
        logger.exception("Failed to load profile for %s", user_id)
        return None


def store_session(auth_body: Dict[str, Any], user: Dict[str, Any] | None = None) -> Dict[str, Any]:
    user = user or auth_body.get("user") or {}
    metadata = user.get("user_metadata") or {}
    profile = _load_profile(str(user.get("id"))) if user.get("id") else None
    session.clear()
    session["access_token"] = auth_body.get("access_token")
    session["refresh_token"] = auth_body.get("refresh_token")
    session["user"] = {
        "id": user.get("id"),
        "email": user.get("email"),
        "full_name": (profile or {}).get("full_name") or metadata.get("full_name") or user.get("email"),
        "role": (profile or {}).get("role") or metadata.get("role") or "user",
    }
    return session["user"]


def login_gate():
    """Send requests without a session to the login page (API calls get a 401)."""
    path = request.path
    has_session = bool(session.get("access_token"))
    logger.debug("Gate path=%s session=%s", path, "yes" if has_session else "no")
    if has_session or is_public_path(path):
        return None
    if path.startswith("/api/"):
        return jsonify({"ok": False, "error": NO_SESSION_MESSAGE}), 401
    return redirect(url_for("auth.login", next=path))


def _safe_next(value: str | None) -> str:
    if value and value.startswith("/") and not value.startswith("//") and not is_public_path(value):
        return value
    return "/dashboard"


@bp.route("/login", methods=["GET", "POST"])
def login():
    next_url = _safe_next(request.values.get("next"))
    if request.method == "GET":
        if session.get("access_token"):
            return redirect(next_url)
        error = "No se pudo completar el inicio de sesión." if request.args.get("error") else ""
        return render_template_string(LOGIN_HTML, error=error, message="", email="", next_url=next_url)

    email = (request.form.get("email") or "").strip()
    password = request.form.get("password") or ""
    mode = request.form.get("mode") or "password"
    try:
        if mode == "otp":
            sign_in_with_otp(email, f"{request.host_url.rstrip('/')}/auth/callback")
            return render_template_string(
                LOGIN_HTML,
                error="",
                message="Revisa tu correo para continuar.",
                email=email,
                next_url=next_url,
            )
        if not password:
            raise SupabaseAuthError("La contraseña es requerida")
        store_session(sign_in_with_password(email, password))
    except SupabaseAuthError as exc:
        logger.info("Login failed for %s: %s", email, exc)
        return render_template_string(LOGIN_HTML, error=str(exc), message="", email=email, next_url=next_url), 401
    logger.info("User %s signed in", email)
    return redirect(next_url)


@bp.route("/auth/callback")
def auth_callback():
    token_hash = request.args.get("token_hash")
    access_token = request.args.get("access_token")
    try:
        if token_hash:
            store_session(verify_otp(token_hash, request.args.get("type") or "magiclink"))
        elif access_token:
            body = {"access_token": access_token, "refresh_token": request.args.get("refresh_token")}
            store_session(body, get_user(access_token))
        else:
            return CALLBACK_HTML
    except SupabaseAuthError:
        logger.exception("Auth callback failed")
        return redirect(url_for("auth.login", error="callback"))
    return redirect(_safe_next(request.args.get("next")))


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    token = session.get("access_token")
    if token:
        sign_out(token)
    session.clear()
    return redirect(url_for("auth.login"))


# User administration


def fetch_users() -> List[Dict[str, Any]]:
    rows = db.fetch_all_rows("SELECT * FROM profiles ORDER BY created_at DESC")
    me = (current_user() or {}).get("id")
    for row in rows:
        row["is_current"] = me is not None and str(row.get("id")) == str(me)
    return rows


def invite_user(email: str, full_name: str, role: str) -> Dict[str, Any]:
    if not session.get("access_token"):
        raise SupabaseAuthError(NO_SESSION_MESSAGE, 401)
    email = (email or "").strip()
    full_name = (full_name or "").strip()
    if "@" not in email:
        raise SupabaseAuthError("Correo inválido")
    if len(full_name) < 2:
        raise SupabaseAuthError("El nombre es requerido")
    if role not in ROLES:
        raise SupabaseAuthError("Selecciona un rol")

    invited = invite_user_by_email(
        email,
        {"full_name": full_name, "role": role, "status": "invited"},
        f"{config.APP_URL}/auth/callback",
    )
    user_id = invited.get("id") if isinstance(invited, dict) else None
    if user_id:
        db.execute_sql(
            "INSERT INTO profiles (id, email, full_name, role, status) VALUES (%s, %s, %s, %s, 'invited') "
            "ON CONFLICT (id) DO UPDATE SET full_name = EXCLUDED.full_name, role = EXCLUDED.role",
            (user_id, email, full_name, role),
        )
        db.commit()
    logger.info("Invited %s as %s", email, role)
    return invited


def update_user_role(user_id: str, role: str, status: str) -> None:
    if role not in ROLES:
        raise ValueError(f"Rol no válido: {role}")
    if status not in USER_STATUSES:
        raise ValueError(f"Estatus no válido: {status}")
    db.execute_sql("UPDATE profiles SET role = %s, status = %s WHERE id = %s", (role, status, user_id))
    db.commit()
