import json
from datetime import timedelta

from extensions import sock
from utils.auth_utils import current_user, is_admin, users_col
from utils.dates import utcnow

DEFAULT_MINUTES = 5


def online_users(minutes=DEFAULT_MINUTES, limit=100):
    """
    Utilisateurs vus dans les `minutes` dernières minutes, plus récents d'abord.
    """
    since = utcnow() - timedelta(minutes=minutes)
    cursor = (
        users_col()
        .find({"last_seen": {"$gte": since}})
        .sort("last_seen", -1)
        .limit(limit)
    )
    return [
        {
            "username": u.get("username"),
            "role": u.get("role"),
            "last_seen": u["last_seen"].isoformat(),
        }
        for u in cursor
    ]


def handle_message(payload):
    """
    Réponse à une trame reçue, ou None si la trame est ignorée.
    """
    msg_type = (payload.get("type") or "").strip()

    if msg_type == "list":
        try:
            minutes = int(payload.get("minutes") or DEFAULT_MINUTES)
        except (TypeError, ValueError):
            minutes = DEFAULT_MINUTES
        return {"type": "presence", "users": online_users(minutes)}

    return None


def serve_presence(ws):
    """
    Boucle de la connexion : admins uniquement, une réponse par trame
    reconnue, fin quand le client ferme (receive() -> None).
    """
    if not is_admin(current_user()):
        ws.send(json.dumps({"type": "error", "message": "Accès refusé"}))
        ws.close()
        return

    while True:
        data = ws.receive()
        if data is None:
            break

        try:
            payload = json.loads(data)
        except ValueError:
            continue
        if not isinstance(payload, dict):
            continue

        reply = handle_message(payload)
        if reply is not None:
            ws.send(json.dumps(reply))


# sock.route ne renvoie pas la fonction décorée
@sock.route("/ws/admin/presence")
def admin_presence_ws(ws):
    serve_presence(ws)
