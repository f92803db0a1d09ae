from functools import wraps

import bcrypt
from bson.errors import InvalidId
from bson.objectid import ObjectId
from flask import abort, current_app, g, redirect, request, session, url_for
from pymongo.errors import PyMongoError

import extensions
from utils.roles import ROLE_ADMIN, roles_col


def users_col():
    return extensions.db.users


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, password_hash) -> bool:
    if not password_hash:
        return False
    if isinstance(password_hash, str):
        password_hash = password_hash.encode("utf-8")
    return bcrypt.checkpw(password.encode("utf-8"), password_hash)


def login_user(user):
    session.clear()
    session["user_id"] = str(user["_id"])
    session.permanent = True
    g.current_user = user


def logout_user():
    session.clear()
    g.current_user = None


def current_user():
    """
    Utilisateur connecté (document Mongo) ou None.
    Chargé une seule fois par requête.
    """
    if "current_user" in g:
        return g.current_user

    user = None
    user_id = session.get("user_id")
    if user_id:
        try:
            user = users_col().find_one({"_id": ObjectId(user_id)})
        except InvalidId:
            user = None

        # Session qui pointe vers un compte supprimé
        if not user:
            session.clear()

    g.current_user = user
    return user


def is_in_role(user, *roles) -> bool:
    """
    is_in_role(user, "admin") / is_in_role(user, "admin", "member")
    / is_in_role(user, ["admin", "member"])
    """
    if len(roles) == 1 and isinstance(roles[0], (list, tuple, set)):
        roles = tuple(roles[0])

    if not user or not roles:
        return False

    return user.get("role") in roles


def is_admin(user=None) -> bool:
    if user is None:
        user = current_user()
    return is_in_role(user, ROLE_ADMIN)


def _make_gate(role_name):
    def gate(user):
        # Les admins passent toutes les gates
        if is_in_role(user, ROLE_ADMIN):
            return True
        return is_in_role(user, role_name)

    return gate


def define_gates() -> dict:
    """
    Une gate par rôle en base : nom du rôle -> callable(user) -> bool
    """
    gates = {}
    try:
        for role in roles_col().find({}):
            gates[role["name"]] = _make_gate(role["name"])
    except PyMongoError:
        current_app.logger.exception("Impossible de charger les rôles pour les gates")
        return {}
    return gates


def get_gates() -> dict:
    if "gates" not in g:
        g.gates = define_gates()
    return g.gates


def can(user, permission: str) -> bool:
    if not user:
        return False

    gate = get_gates().get(permission)
    if gate is None:
        return False
    return bool(gate(user))


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if current_user() is None:
            return redirect(url_for("auth.login", next=request.path))
        return view(*args, **kwargs)

    return wrapped


def role_required(*roles):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                return redirect(url_for("auth.login", next=request.path))
            if not is_in_role(user, *roles):
                abort(403)
            return view(*args, **kwargs)

        return wrapped

    return decorator


def permission_required(permission: str):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                return redirect(url_for("auth.login", next=request.path))
            if not can(user, permission):
                abort(403)
            return view(*args, **kwargs)

        return wrapped

    return decorator
