"""
Seeders : rôles, réglages par défaut, comptes de démo.

    flask --app app seed all
    flask --app app seed roles
"""

import click
from flask import current_app
from flask.cli import AppGroup

from blueprints.auth import new_user_doc
from utils.auth_utils import users_col
from utils.roles import ROLE_ADMIN, ROLE_MEMBER, ROLES, ensure_role
from utils.settings import DEFAULT_SETTINGS, init_setting

seed_cli = AppGroup("seed", help="Remplit la base avec les données de départ.")

DEMO_USERS = (
    # (username, name, email, password, role)
    ("admin", "Admin", "admin@local.host", "admin", ROLE_ADMIN),
    ("member", "Member", "member@local.host", "member", ROLE_MEMBER),
)


def seed_roles():
    for role in ROLES:
        ensure_role(role)
    return list(ROLES)


def seed_settings():
    for name, value in DEFAULT_SETTINGS.items():
        init_setting(name, value)
    return list(DEFAULT_SETTINGS)


def seed_users():
    """
    Les comptes déjà présents (même username) ne sont pas touchés.
    """
    u_col = users_col()
    created = []
    for username, name, email, password, role in DEMO_USERS:
        if u_col.find_one({"username": username}):
            continue
        u_col.insert_one(new_user_doc(username, name, email, password, role=role, verified=True))
        created.append(username)
    return created


def seed_all():
    return {
        "roles": seed_roles(),
        "settings": seed_settings(),
        "users": seed_users(),
    }


@seed_cli.command("roles")
def roles_command():
    click.echo(f"Rôles : {', '.join(seed_roles())}")


@seed_cli.command("settings")
def settings_command():
    click.echo(f"Réglages : {', '.join(seed_settings())}")


@seed_cli.command("users")
def users_command():
    created = seed_users()
    click.echo(f"Utilisateurs créés : {', '.join(created) or 'aucun'}")


@seed_cli.command("all")
def all_command():
    result = seed_all()
    current_app.logger.info("Seed terminé : %s", result)
    click.echo(f"Rôles : {', '.join(result['roles'])}")
    click.echo(f"Réglages : {', '.join(result['settings'])}")
    click.echo(f"Utilisateurs créés : {', '.join(result['users']) or 'aucun'}")
