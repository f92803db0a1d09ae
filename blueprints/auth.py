import re

from flask import Blueprint, current_app, redirect, render_template, request, url_for
from pymongo.errors import DuplicateKeyError

from extensions import limiter
from utils.auth_utils import (
    check_password,
    current_user,
    hash_password,
    login_user,
    logout_user,
    users_col,
)
from utils.dates import utcnow
from utils.formatting import sanitize_text_field
from utils.roles import ROLE_MEMBER

auth_bp = Blueprint("auth", __name__)

USERNAME_REGEX = re.compile(r"^[a-zA-Z0-9_-]{3,20}$")
EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def safe_next_url(target):
    """
    N'accepte que des chemins relatifs au site (pas de //autre-site.com,
    ni de /\\autre-site.com que les navigateurs lisent pareil).
    """
    if not target or not target.startswith("/") or target.startswith(("//", "/\\")):
        return None
    return target


def new_user_doc(username, name, email, password, role=ROLE_MEMBER, verified=False):
    now = utcnow()
    return {
        "username": username,
        "name": name,
        "email": email,
        "password": hash_password(password),
        "role": role,
        "is_blocked": False,
        "last_seen": None,
        "email_verified_at": now if verified else None,
        "created_at": now,
    }


@auth_bp.route("/register", methods=["GET", "POST"])
@limiter.limit("5 per minute")
def register():
    if current_user():
        return redirect(url_for("home.home"))

    if request.method == "POST":
        u_col = users_col()

        username = (request.form.get("user") or "").strip()
        name = sanitize_text_field(request.form.get("name")) or username
        email = (request.form.get("email") or "").strip().lower()
        pswd = request.form.get("password") or ""
        confirm = request.form.get("confirm_password") or ""

        if not USERNAME_REGEX.match(username):
            return render_template(
                "register.html",
                erreur="Le nom d'utilisateur doit faire entre 3 et 20 caractères (lettres, chiffres, _ et -)",
            )

        if not EMAIL_REGEX.match(email):
            return render_template("register.html", erreur="Adresse email invalide")

        if u_col.find_one({"username": username}):
            return render_template("register.html", erreur="Nom d'utilisateur déjà utilisé")

        if u_col.find_one({"email": email}):
            return render_template("register.html", erreur="Cette adresse email est déjà utilisée")

        if not (any(c.isdigit() for c in pswd) and len(pswd) >= 8):
            return render_template(
                "register.html",
                erreur="Le mot de passe doit faire 8 caractères minimum et contenir au moins 1 chiffre",
            )

        if pswd != confirm:
            return render_template("register.html", erreur="Les mots de passe ne sont pas identiques")

        user = new_user_doc(username, name, email, pswd)
        try:
            result = u_col.insert_one(user)
        except DuplicateKeyError:
            return render_template("register.html", erreur="Nom d'utilisateur ou email déjà utilisé")
        user["_id"] = result.inserted_id

        current_app.logger.info("Nouvel utilisateur : %s", username)
        login_user(user)
        return redirect(url_for("home.home"))

    return render_template("register.html")


@auth_bp.route("/login", methods=["GET", "POST"])
@limiter.limit("5 per minute")
def login():
    if current_user():
        return redirect(url_for("home.home"))

    if request.method == "POST":
        ident = (request.form.get("user") or "").strip()
        pswd = request.form.get("password") or ""

        u_col = users_col()
        util = u_col.find_one({"username": ident}) or u_col.find_one({"email": ident.lower()})

        if not util or not check_password(pswd, util.get("password")):
            return render_template("login.html", erreur="Identifiants incorrects")

        if util.get("is_blocked"):
            return render_template("login.html", erreur="Ton compte a été bloqué.")

        login_user(util)
        target = safe_next_url(request.args.get("next") or request.form.get("next"))
        return redirect(target or url_for("home.home"))

    return render_template("login.html", next=request.args.get("next"))


@auth_bp.route("/logout", methods=["GET", "POST"])
def logout():
    logout_user()
    return redirect(url_for("home.frontpage"))
