from datetime import datetime, timezone


def utcnow():
    """
    Heure UTC naïve (sans tzinfo), le format des dates stockées en base.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
