# app.py
import os
from datetime import timedelta

from flask import Flask, current_app, render_template, request
from dotenv import load_dotenv
from flask_wtf.csrf import CSRFProtect
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

import extensions
from extensions import limiter, init_db, set_db, sock
from utils import hooks
from utils.auth_utils import can, current_user
from utils.formatting import esc_html
from utils.middleware import register_default_actions, register_middleware
from utils.roles import ROLES, ensure_role
from utils.settings import DEFAULT_SETTINGS, init_setting

csrf = CSRFProtect()

TRUE_VALUES = ("1", "true", "yes", "on")

CONTACT = '<span class="font-mono">{email}</span>'

ERROR_PAGES = {
    400: (
        "Requête invalide",
        "Oops, la requête est mal formulée.",
        "Si c'est survenu après avoir complété un formulaire, réessaie.",
        True,
    ),
    403: (
        "Accès interdit",
        "Tu n'as pas accès à cette page.",
        "Si tu penses que c'est une erreur, contacte l'administrateur pour vérifier tes accès.",
        True,
    ),
    404: (
        "Page introuvable",
        "La page que tu cherches n'existe pas ou plus.",
        "Clique sur le bouton ci-dessous pour revenir à l'accueil.",
        False,
    ),
    429: (
        "Tu vas un peu trop vite",
        "Trop de requêtes en peu de temps. Attends un petit peu avant de réessayer.",
        "C'est juste une protection pour éviter les abus.",
        False,
    ),
    500: (
        "Erreur serveur",
        "Une erreur est survenue de notre côté.",
        "Contacte-nous à {contact} et explique ce que tu faisais pour arriver ici.",
        True,
    ),
}


def env_flag(name, default="0") -> bool:
    return os.environ.get(name, default).lower() in TRUE_VALUES


def safe_current_user():
    """
    Utilisateur pour le header, ou None si non connecté / base indisponible.
    Utilisable partout (erreurs, maintenance, etc.).
    """
    try:
        return current_user()
    except PyMongoError:
        return None


def render_error(code):
    title, message, extra, show_contact = ERROR_PAGES.get(
        code,
        (
            "Oops, une erreur est survenue !",
            f"Une erreur inconnue s'est produite. Code d'erreur : {code}.",
            "Réessaye un peu plus tard ou contacte le support à {contact}.",
            True,
        ),
    )
    contact = CONTACT.format(email=current_app.config["CONTACT_EMAIL"])
    return render_template(
        "error.html",
        code=code,
        title=title,
        message=message,
        extra=extra.format(contact=contact),
        show_contact=show_contact,
        home_url="/",
    ), code


def register_error_handlers(app):

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        if request.path.startswith("/ws/"):
            raise e
        return render_error(e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        app.logger.exception(e)
        return render_error(500)


def register_template_helpers(app):

    @app.context_processor
    def inject_helpers():
        app_name = app.config["APP_NAME"]
        return {
            "current_user": safe_current_user(),
            "can": can,
            "apply_filters": hooks.apply_filters,
            "do_action": hooks.do_action,
            "esc_html": esc_html,
            "app_name": hooks.apply_filters("app/title", app_name),
        }


def create_app(config=None):
    load_dotenv()

    app = Flask(__name__)

    app.config["APP_NAME"] = os.environ.get("APP_NAME", "Starter App")
    app.config["CONTACT_EMAIL"] = os.environ.get("CONTACT_EMAIL", "contact@local.host")
    app.config["APP_TIMEZONE"] = os.environ.get("APP_TIMEZONE", "Europe/Brussels")
    app.config["LAST_SEEN_INTERVAL"] = int(os.environ.get("LAST_SEEN_INTERVAL", "60"))
    if os.environ.get("ADMIN_LOG_FILE"):
        app.config["ADMIN_LOG_FILE"] = os.environ["ADMIN_LOG_FILE"]

    if config:
        app.config.update(config)

    # ---------- Secret key ----------
    secret_key = app.config.get("SECRET_KEY") or os.environ.get("FLASK_SECRET_KEY")
    if not secret_key:
        raise RuntimeError("Vous devez définir FLASK_SECRET_KEY dans le .env")
    app.secret_key = secret_key

    # ---------- Détection environnement ----------
    flask_env = os.environ.get("FLASK_ENV", "prod").lower()
    is_dev = flask_env == "dev"

    # ---------- CSRF ----------
    app.config.setdefault("WTF_CSRF_ENABLED", not is_dev)
    if not is_dev:
        # Config stricte seulement en prod
        app.config.setdefault("WTF_CSRF_TIME_LIMIT", 3600)
        app.config.setdefault("WTF_CSRF_METHODS", ["POST", "PUT", "PATCH", "DELETE"])
    csrf.init_app(app)

    app.logger.info(
        "FLASK_ENV=%s -> CSRF actif = %s", flask_env, app.config["WTF_CSRF_ENABLED"]
    )

    # ---------- Sessions / cookies ----------
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = env_flag("SESSION_COOKIE_SECURE")
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=6)

    # ---------- Init DB ----------
    if app.config.get("MONGO_DB") is not None:
        set_db(app.config["MONGO_DB"])
    else:
        mongo_uri = os.environ.get("MONGO_URI")
        if not mongo_uri:
            raise RuntimeError("Vous devez définir la variable d'environnement MONGO_URI")
        init_db(mongo_uri)

    extensions.ensure_indexes()

    # ---------- Réglages par défaut (une seule fois) ----------
    # On ne set QUE à la création du doc, ensuite c'est l'admin qui pilote via /admin
    init_setting("under_maintenance", env_flag("MAINTENANCE"))
    for name, value in DEFAULT_SETTINGS.items():
        init_setting(name, value)

    # Les gates sont construites à partir des rôles en base
    for role in ROLES:
        ensure_role(role)

    # ---------- Actions par défaut ----------
    register_default_actions()

    # ---------- WebSocket ----------
    # Les routes doivent être déclarées avant init_app
    import ws.presence_ws  # noqa: F401

    sock.init_app(app)

    # ---------- Rate limiting ----------
    limiter.init_app(app)

    # ---------- Middlewares ----------
    register_middleware(app)

    # ---------- Blueprints ----------
    from blueprints.admin import admin_bp
    from blueprints.auth import auth_bp
    from blueprints.home import home_bp

    app.register_blueprint(home_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    # ---------- CLI ----------
    from commands.seed import seed_cli

    app.cli.add_command(seed_cli)

    # ---------- Templates ----------
    register_template_helpers(app)

    # ---------- Handlers d'erreur custom ----------
    register_error_handlers(app)

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
