import extensions

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"

ROLES = (
    ROLE_ADMIN,
    ROLE_MEMBER,
)

ROLE_DESCRIPTIONS = {
    ROLE_ADMIN: "Administrateur du site",
    ROLE_MEMBER: "Membre",
}


def roles_col():
    """
    Collection des rôles.
    Schéma : { _id: ObjectId, name: "admin", description: "..." }
    """
    return extensions.db.roles


def get_role(name: str):
    return roles_col().find_one({"name": name})


def role_names() -> list:
    return [r["name"] for r in roles_col().find({}).sort("name", 1)]


def ensure_role(name: str, description=None):
    roles_col().update_one(
        {"name": name},
        {"$setOnInsert": {"description": description or ROLE_DESCRIPTIONS.get(name)}},
        upsert=True,
    )


def validate_role(name: str) -> str:
    name = (name or "").strip()
    if not get_role(name):
        raise ValueError(f"Rôle inconnu : {name!r}")
    return name
