from datetime import datetime

from flask import abort, current_app, redirect, request, url_for

from utils import hooks
from utils.auth_utils import current_user, is_admin, logout_user, users_col
from utils.dates import utcnow
from utils.maintenance import ALLOWED_ENDPOINTS, ALLOWED_PREFIXES, is_under_maintenance

LAST_SEEN_ACTION = "update/last-seen"


def _is_passthrough_request() -> bool:
    if request.path.startswith(ALLOWED_PREFIXES):
        return True
    return request.endpoint in ALLOWED_ENDPOINTS


def deny_requests_under_maintenance():
    """
    Mode maintenance :
    - anonyme           -> redirection vers /maintenance
    - connecté non admin -> déconnexion + redirection
    - admin             -> passe
    /maintenance, /static, /ws/ et la page de login restent accessibles.
    """
    if _is_passthrough_request():
        return None

    if not is_under_maintenance():
        return None

    user = current_user()
    if user is None:
        return redirect(url_for("home.under_maintenance"))

    if not is_admin(user):
        current_app.logger.info(
            "Maintenance : déconnexion de %s", user.get("username")
        )
        logout_user()
        return redirect(url_for("home.under_maintenance"))

    return None


def deny_blocked_users():
    if request.path.startswith("/static"):
        return None

    user = current_user()
    if user and user.get("is_blocked"):
        abort(403)
    return None


def update_last_seen():
    user = current_user()
    if user:
        hooks.do_action(LAST_SEEN_ACTION, user)
    return None


def touch_last_seen(user):
    """
    Callback par défaut de l'action update/last-seen.
    N'écrit pas plus d'une fois par LAST_SEEN_INTERVAL secondes.
    """
    now = utcnow()
    interval = current_app.config.get("LAST_SEEN_INTERVAL", 60)

    last_seen = user.get("last_seen")
    if isinstance(last_seen, datetime) and (now - last_seen).total_seconds() < interval:
        return

    users_col().update_one({"_id": user["_id"]}, {"$set": {"last_seen": now}})
    user["last_seen"] = now


def register_default_actions(registry=None):
    registry = registry or hooks.registry
    registry.add_action(LAST_SEEN_ACTION, touch_last_seen)


def register_middleware(app):
    # L'ordre compte : maintenance, puis comptes bloqués, puis last seen
    app.before_request(deny_requests_under_maintenance)
    app.before_request(deny_blocked_users)
    app.before_request(update_last_seen)
