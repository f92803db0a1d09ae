import json
import os
import re
from datetime import datetime

import pytz
from bson.errors import InvalidId
from bson.objectid import ObjectId
from flask import (
    Blueprint,
    abort,
    current_app,
    redirect,
    render_template,
    request,
    url_for,
)

from utils.auth_utils import current_user, permission_required, users_col
from utils.dates import utcnow
from utils.maintenance import is_under_maintenance, set_maintenance
from utils.roles import ROLE_ADMIN, role_names, validate_role
from utils.settings import all_settings, coerce_setting, set_setting

admin_bp = Blueprint("admin", __name__)


def local_tz():
    return pytz.timezone(current_app.config.get("APP_TIMEZONE", "Europe/Brussels"))


def format_dt(value):
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = pytz.utc.localize(value)
    return value.astimezone(local_tz()).strftime("%d/%m/%Y %H:%M")


def build_user_view(user):
    """
    Formatage générique pour afficher un utilisateur dans les templates admin.
    """
    return {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "is_admin": user.get("role") == ROLE_ADMIN,
        "is_blocked": bool(user.get("is_blocked")),
        "last_seen": format_dt(user.get("last_seen")),
        "created_at": format_dt(user.get("created_at")) or "?",
    }


# ---------- Logs admin ----------

def get_logs_file_path():
    """
    Retourne le chemin du fichier de logs admin.
    Par défaut : instance/admin_actions.log
    Peut être override par config["ADMIN_LOG_FILE"].
    """
    path = current_app.config.get("ADMIN_LOG_FILE")
    if path:
        return path

    os.makedirs(current_app.instance_path, exist_ok=True)
    return os.path.join(current_app.instance_path, "admin_actions.log")


def log_admin_action(actor, action, target=None, details=None, ip=None):
    """
    Écrit une ligne JSON dans admin_actions.log
    actor  : pseudo de l'admin
    action : type d'action ("block", "set_role", "maintenance", ...)
    target : pseudo du compte ciblé
    details: texte libre
    ip     : IP de la requête
    """
    entry = {
        "ts": utcnow().isoformat(),
        "actor": actor,
        "action": action,
        "target": target,
    }
    if details:
        entry["details"] = details
    if ip:
        entry["ip"] = ip

    try:
        with open(get_logs_file_path(), "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except OSError:
        current_app.logger.exception("Écriture du log admin impossible")


def read_admin_logs(limit=500):
    try:
        with open(get_logs_file_path(), "r", encoding="utf-8") as f:
            lines = f.readlines()[-limit:]
    except FileNotFoundError:
        return []

    logs = []
    for line in reversed(lines):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue

        ts_display = entry.get("ts", "")
        try:
            ts_display = format_dt(datetime.fromisoformat(ts_display)) or ts_display
        except ValueError:
            pass

        logs.append(
            {
                "time": ts_display,
                "actor": entry.get("actor", "?"),
                "action": entry.get("action", ""),
                "target": entry.get("target"),
                "details": entry.get("details"),
                "ip": entry.get("ip"),
            }
        )
    return logs


# ---------- Helpers ----------

def get_target_user(user_id):
    try:
        user = users_col().find_one({"_id": ObjectId(user_id)})
    except InvalidId:
        user = None
    if not user:
        abort(404)
    return user


def back_to_panel(**kwargs):
    return redirect(url_for("admin.admin_panel", **kwargs))


# ---------- Routes ----------

@admin_bp.route("/admin")
@permission_required(ROLE_ADMIN)
def admin_panel():
    u_col = users_col()
    q = (request.args.get("q") or "").strip()

    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        query = {"$or": [{"username": pattern}, {"email": pattern}]}
        cursor = u_col.find(query).sort("_id", -1).limit(50)
    else:
        cursor = u_col.find({}).sort("_id", -1).limit(30)

    users = [build_user_view(u) for u in cursor]

    return render_template(
        "admin.html",
        users=users,
        q=q,
        roles=role_names(),
        settings=all_settings(),
        maintenance_enabled=is_under_maintenance(),
        erreur=request.args.get("erreur"),
        message=request.args.get("message"),
    )


@admin_bp.route("/admin/users/<user_id>/<action>", methods=["POST"])
@permission_required(ROLE_ADMIN)
def admin_user_action(user_id, action):
    if action not in ("block", "unblock", "role"):
        abort(404)

    actor = current_user()
    user = get_target_user(user_id)
    username = user.get("username")
    ip = request.remote_addr or "?"

    if user["_id"] == actor["_id"]:
        return back_to_panel(erreur="Tu ne peux pas agir sur ton propre compte.")

    if action == "block":
        users_col().update_one({"_id": user["_id"]}, {"$set": {"is_blocked": True}})
        log_admin_action(actor["username"], "block", target=username, ip=ip)
        return back_to_panel(message=f"{username} est bloqué.")

    if action == "unblock":
        users_col().update_one({"_id": user["_id"]}, {"$set": {"is_blocked": False}})
        log_admin_action(actor["username"], "unblock", target=username, ip=ip)
        return back_to_panel(message=f"{username} est débloqué.")

    try:
        role = validate_role(request.form.get("role"))
    except ValueError as e:
        return back_to_panel(erreur=str(e))

    users_col().update_one({"_id": user["_id"]}, {"$set": {"role": role}})
    log_admin_action(actor["username"], "set_role", target=username, details=f"role={role}", ip=ip)
    return back_to_panel(message=f"{username} a maintenant le rôle {role}.")


@admin_bp.route("/admin/maintenance", methods=["POST"])
@permission_required(ROLE_ADMIN)
def admin_toggle_maintenance():
    new_state = request.form.get("maintenance_enabled") == "on"
    set_maintenance(new_state)

    log_admin_action(
        actor=current_user()["username"],
        action="toggle_maintenance",
        details=f"enabled={new_state}",
        ip=request.remote_addr or "?",
    )

    msg = (
        "Maintenance activée : seuls les admins ont encore accès au site."
        if new_state
        else "Maintenance désactivée : le site est de nouveau accessible."
    )
    return back_to_panel(message=msg)


@admin_bp.route("/admin/settings", methods=["POST"])
@permission_required(ROLE_ADMIN)
def admin_update_setting():
    name = (request.form.get("name") or "").strip()
    try:
        value = coerce_setting(name, request.form.get("value"))
    except ValueError as e:
        return back_to_panel(erreur=str(e))

    set_setting(name, value)
    log_admin_action(
        actor=current_user()["username"],
        action="update_setting",
        target=name,
        details=f"value={value}",
        ip=request.remote_addr or "?",
    )
    return back_to_panel(message=f"Réglage {name} mis à jour.")


@admin_bp.route("/admin/logs")
@permission_required(ROLE_ADMIN)
def admin_logs():
    return render_template("admin_logs.html", logs=read_admin_logs())
