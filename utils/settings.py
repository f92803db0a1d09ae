import extensions

DEFAULT_SETTINGS = {
    # Site en maintenance ?
    "under_maintenance": False,
    # Durée de vie du cache du site, en minutes
    "cache_ttl": 60,
}

BOOLEAN_SETTINGS = {"under_maintenance"}
INTEGER_SETTINGS = {"cache_ttl"}

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off", "")


def settings_col():
    """
    Collection des réglages du site.
    Document : { _id: "under_maintenance", value: false }
    """
    return extensions.db.app_settings


def get_setting(name: str, default=None):
    doc = settings_col().find_one({"_id": name})
    if not doc:
        return default
    return doc.get("value", default)


def set_setting(name: str, value):
    settings_col().update_one(
        {"_id": name},
        {"$set": {"value": value}},
        upsert=True,
    )


def init_setting(name: str, value):
    """
    N'écrit la valeur QUE si le réglage n'existe pas encore.
    """
    settings_col().update_one(
        {"_id": name},
        {"$setOnInsert": {"value": value}},
        upsert=True,
    )


def all_settings() -> dict:
    settings = dict(DEFAULT_SETTINGS)
    for doc in settings_col().find({}):
        settings[doc["_id"]] = doc.get("value")
    return settings


def coerce_setting(name: str, raw):
    """
    Convertit une valeur venant d'un formulaire admin.
    Lève ValueError si le réglage est inconnu ou la valeur invalide.
    """
    if name not in DEFAULT_SETTINGS:
        raise ValueError(f"Réglage inconnu : {name}")

    text = (raw or "").strip().lower() if raw is None or isinstance(raw, str) else raw

    if name in BOOLEAN_SETTINGS:
        if isinstance(text, bool):
            return text
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
        raise ValueError(f"Valeur booléenne invalide pour {name} : {raw!r}")

    if name in INTEGER_SETTINGS:
        try:
            return int(text)
        except (TypeError, ValueError):
            raise ValueError(f"Valeur entière invalide pour {name} : {raw!r}") from None

    return raw
