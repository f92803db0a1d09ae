from flask import current_app
from pymongo.errors import PyMongoError

from utils.settings import get_setting, set_setting

MAINTENANCE_SETTING = "under_maintenance"

# Chemins qui restent accessibles pendant la maintenance
ALLOWED_PREFIXES = ("/static", "/ws/")
ALLOWED_ENDPOINTS = {"home.under_maintenance", "auth.login", "static"}


def is_under_maintenance() -> bool:
    """
    Lit le flag de maintenance dans la collection app_settings.
    Document : { _id: "under_maintenance", value: bool }
    """
    try:
        return bool(get_setting(MAINTENANCE_SETTING, False))
    except PyMongoError:
        current_app.logger.exception("Lecture du flag de maintenance impossible")
        return False


def set_maintenance(enabled: bool):
    set_setting(MAINTENANCE_SETTING, bool(enabled))
