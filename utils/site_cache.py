from datetime import datetime, timedelta

import extensions
from utils.dates import utcnow
from utils.formatting import maybe_serialize, maybe_unserialize
from utils.settings import get_setting

DEFAULT_TTL = 60


def cache_col():
    """
    Cache interne du site.
    Document : { _id: "nom", content: ..., updated_at: datetime }
    """
    return extensions.db.app_cache


def _utcnow():
    return utcnow()


class SiteCache:
    """
    Cache nom -> valeur en base, avec une durée de vie (en minutes)
    vérifiée à chaque lecture. Pas d'éviction : une entrée expirée reste en
    base jusqu'au prochain store().
    """

    def __init__(self, ttl=None):
        self.ttl = DEFAULT_TTL

        if ttl is None:
            ttl = get_setting("cache_ttl")

        # Le réglage ne peut qu'allonger la durée par défaut
        try:
            ttl = int(ttl) if ttl is not None else None
        except (TypeError, ValueError):
            ttl = None
        if ttl and ttl >= DEFAULT_TTL:
            self.ttl = ttl

    def is_fresh(self, record) -> bool:
        updated_at = record.get("updated_at")
        if not isinstance(updated_at, datetime):
            return False
        return updated_at + timedelta(minutes=self.ttl) >= _utcnow()

    def get(self, name: str, default=None):
        record = cache_col().find_one({"_id": name})
        if record and self.is_fresh(record):
            return maybe_unserialize(record.get("content"))
        return default

    def store(self, name: str, content=None):
        doc = {
            "content": maybe_serialize(content),
            "updated_at": _utcnow(),
        }
        cache_col().update_one({"_id": name}, {"$set": doc}, upsert=True)
        return {"_id": name, **doc}

    def remember(self, name: str, compute):
        """
        Valeur en cache, sinon compute() puis store().
        """
        missing = object()
        value = self.get(name, missing)
        if value is not missing:
            return value

        value = compute()
        self.store(name, value)
        return value
