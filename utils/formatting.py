"""
Helpers d'échappement / nettoyage HTML et de sérialisation.

Les échappeurs passent leur résultat dans un filtre du même nom
(voir utils.hooks) pour que l'appli puisse les ajuster.
"""

import json
import re
from html.entities import name2codepoint
from urllib.parse import parse_qsl

from bson import json_util

from utils.hooks import apply_filters

STREAM_WRAPPERS = (
    "https",
    "ftps",
    "compress.zlib",
    "php",
    "file",
    "glob",
    "data",
    "http",
    "ftp",
    "phar",
)

ALLOWED_PROTOCOLS = (
    "http", "https", "ftp", "ftps", "mailto", "news", "irc", "gopher", "nntp", "feed",
    "telnet", "mms", "rtsp", "sms", "svn", "tel", "fax", "xmpp", "webcal", "urn",
)

MOBILE_MARKERS = (
    "Mobile",
    "Android",
    "Silk/",
    "Kindle",
    "BlackBerry",
    "Opera Mini",
    "Opera Mobi",
)

ALLBLOCKS = (
    r"(?:table|thead|tfoot|caption|col|colgroup|tbody|tr|td|th|div|dl|dd|dt|ul|ol|li|pre"
    r"|form|map|area|blockquote|address|math|style|p|h[1-6]|hr|fieldset|legend|section"
    r"|article|aside|hgroup|header|footer|nav|figure|figcaption|details|menu|summary)"
)

ENTITY_RE = re.compile(r"&(#[0-9]{1,7};|#[xX][0-9A-Fa-f]{1,6};|[A-Za-z][A-Za-z0-9]*;)?")
SPECIALCHARS_RE = re.compile(r"[&<>\"']")
APOS_ENTITY_RE = re.compile(r"&#(x)?0*(?(1)27|39);?", re.IGNORECASE)
OCTET_RE = re.compile(r"%[a-f0-9]{2}", re.IGNORECASE)
SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*?>.*?</\1>", re.IGNORECASE | re.DOTALL)
COMMENT_RE = re.compile(r"<!--.*?(?:-->|\Z)", re.DOTALL)
TAG_RE = re.compile(r"<(?!\s)[^>]*>?")
HTML_SPLIT_RE = re.compile(
    r"(<(?:!--.*?(?:-->|\Z)|!\[CDATA\[.*?(?:\]\]>|\Z)|[^>]*>?))",
    re.DOTALL,
)


# ---------- Sérialisation ----------

def is_serialized(data) -> bool:
    """
    Une chaîne est considérée comme sérialisée si c'est du JSON de type
    objet, tableau, chaîne ou null.
    """
    if not isinstance(data, str):
        return False

    data = data.strip()
    if not data:
        return False
    if data != "null" and data[0] not in '{["':
        return False

    try:
        json.loads(data)
    except ValueError:
        return False
    return True


def _check_keys(data):
    """
    Les clés de dictionnaire doivent être des chaînes, comme dans un
    document Mongo : {1: "a"} ressortirait en {"1": "a"}.
    """
    if isinstance(data, dict):
        for key, value in data.items():
            if not isinstance(key, str):
                raise ValueError(f"Clé non sérialisable (chaîne attendue) : {key!r}")
            _check_keys(value)
    elif isinstance(data, (list, tuple)):
        for item in data:
            _check_keys(item)


def maybe_serialize(data):
    """
    Extended JSON (bson.json_util) : ObjectId et datetime font l'aller-retour.
    Lève ValueError si un dictionnaire a des clés qui ne sont pas des chaînes.
    """
    if isinstance(data, (dict, list, tuple)):
        _check_keys(data)
        return json_util.dumps(data)

    # Double sérialisation : une chaîne qui ressemble déjà à du JSON doit
    # ressortir telle quelle de maybe_unserialize.
    if is_serialized(data):
        return json_util.dumps(data)

    return data


def maybe_unserialize(original):
    if is_serialized(original):
        return json_util.loads(original.strip())
    return original


# ---------- Échappement ----------

def check_invalid_utf8(text, strip=False) -> str:
    if text is None:
        return ""

    if isinstance(text, bytes):
        try:
            return text.decode("utf-8")
        except UnicodeDecodeError:
            return text.decode("utf-8", "ignore") if strip else ""

    text = str(text)
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return text.encode("utf-8", "ignore").decode("utf-8") if strip else ""
    return text


def normalize_entities(text: str) -> str:
    """
    Garantit que chaque & démarre une entité valide, sinon il devient &amp;
    """

    def _fix(match):
        entity = match.group(1)
        if entity is None:
            return "&amp;"
        if entity.startswith("#"):
            return match.group(0)
        if entity[:-1] in name2codepoint:
            return match.group(0)
        return "&amp;" + entity

    return ENTITY_RE.sub(_fix, text)


def specialchars(text, quote_style="noquotes", double_encode=False) -> str:
    """
    quote_style :
      - "noquotes" : ni " ni '
      - "double"   : " seulement
      - "single"   : ' seulement
      - "quotes"   : les deux
    """
    text = "" if text is None else str(text)
    if not text:
        return ""

    if not SPECIALCHARS_RE.search(text):
        return text

    if double_encode:
        text = text.replace("&", "&amp;")
    else:
        text = normalize_entities(text)

    text = text.replace("<", "&lt;").replace(">", "&gt;")

    if quote_style in ("double", "quotes"):
        text = text.replace('"', "&quot;")
    if quote_style in ("single", "quotes"):
        text = text.replace("'", "&#039;")

    return text


def esc_html(text) -> str:
    safe_text = check_invalid_utf8(text)
    safe_text = specialchars(safe_text, "quotes")
    return apply_filters("esc_html", safe_text, text)


def esc_attr(text) -> str:
    safe_text = check_invalid_utf8(text)
    safe_text = specialchars(safe_text, "quotes")
    return apply_filters("attribute_escape", safe_text, text)


def esc_textarea(text) -> str:
    safe_text = specialchars(text, "quotes", double_encode=True)
    return apply_filters("esc_textarea", safe_text, text)


def _stripslashes(text: str) -> str:
    return re.sub(r"\\(.?)", r"\1", text, flags=re.DOTALL)


def _addslashes(text: str) -> str:
    return re.sub(r"([\\'\"\x00])", r"\\\1", text)


def esc_js(text) -> str:
    safe_text = check_invalid_utf8(text)
    safe_text = specialchars(safe_text, "double")
    safe_text = APOS_ENTITY_RE.sub("'", _stripslashes(safe_text))
    safe_text = safe_text.replace("\r", "")
    safe_text = _addslashes(safe_text).replace("\n", "\\n")
    return apply_filters("js_escape", safe_text, text)


# ---------- Nettoyage ----------

def strip_all_tags(text, remove_breaks=False) -> str:
    text = SCRIPT_STYLE_RE.sub("", str(text))
    text = COMMENT_RE.sub("", text)
    text = TAG_RE.sub("", text)

    if remove_breaks:
        text = re.sub(r"[\r\n\t ]+", " ", text)

    return text.strip()


def html_excerpt(text, count: int, more=None) -> str:
    if more is None:
        more = ""

    text = strip_all_tags(text, True)
    excerpt = text[:count]

    # Pas d'entité coupée en deux à la fin
    excerpt = re.sub(r"&[^;\s]{0,6}$", "", excerpt)
    if text != excerpt:
        excerpt = excerpt.strip() + more

    return excerpt


def pre_kses_less_than(text: str) -> str:
    """
    Échappe les < qui n'ouvrent pas une vraie balise.
    """

    def _callback(match):
        if ">" not in match.group(0):
            return esc_html(match.group(0))
        return match.group(0)

    return re.sub(r"<[^>]*?((?=<)|>|$)", _callback, text)


def _sanitize_text_fields(value, keep_newlines=False) -> str:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return ""

    filtered = check_invalid_utf8(value)

    if "<" in filtered:
        filtered = pre_kses_less_than(filtered)
        filtered = strip_all_tags(filtered, False)
        filtered = filtered.replace("<\n", "&lt;\n")

    if not keep_newlines:
        filtered = re.sub(r"[\r\n\t ]+", " ", filtered)
    filtered = filtered.strip()

    found = False
    match = OCTET_RE.search(filtered)
    while match:
        filtered = filtered.replace(match.group(0), "")
        found = True
        match = OCTET_RE.search(filtered)

    if found:
        filtered = re.sub(r" +", " ", filtered).strip()

    return filtered


def sanitize_text_field(value) -> str:
    filtered = _sanitize_text_fields(value, False)
    return apply_filters("sanitize_text_field", filtered, value)


def sanitize_textarea_field(value) -> str:
    filtered = _sanitize_text_fields(value, True)
    return apply_filters("sanitize_textarea_field", filtered, value)


# ---------- Divers ----------

def map_deep(value, callback):
    if isinstance(value, dict):
        return {key: map_deep(item, callback) for key, item in value.items()}
    if isinstance(value, list):
        return [map_deep(item, callback) for item in value]
    if isinstance(value, tuple):
        return tuple(map_deep(item, callback) for item in value)
    return callback(value)


def parse_str(query: str) -> dict:
    """
    Découpe une query string. Supporte a[]=1&a[]=2 et a[b]=c.
    """
    result = {}
    for key, value in parse_qsl(query or "", keep_blank_values=True):
        nested = re.match(r"^([^\[]+)\[([^\]]*)\]$", key)
        if not nested:
            result[key] = value
            continue

        name, sub = nested.groups()
        if sub == "":
            bucket = result.get(name)
            if not isinstance(bucket, list):
                bucket = result[name] = []
            bucket.append(value)
        else:
            bucket = result.get(name)
            if not isinstance(bucket, dict):
                bucket = result[name] = {}
            bucket[sub] = value

    return apply_filters("wp_parse_str", result)


def untrailingslashit(text: str) -> str:
    return text.rstrip("/\\")


def url_shorten(url: str, length: int = 35) -> str:
    stripped = url.replace("https://", "").replace("http://", "").replace("www.", "")
    short_url = untrailingslashit(stripped)

    if len(short_url) > length:
        short_url = short_url[: length - 3] + "&hellip;"
    return short_url


def is_stream(path: str) -> bool:
    if "://" not in path:
        return False
    return path.split("://", 1)[0] in STREAM_WRAPPERS


def normalize_path(path: str) -> str:
    wrapper = ""
    if is_stream(path):
        wrapper, path = path.split("://", 1)
        wrapper += "://"

    path = path.replace("\\", "/")

    # Garde le double slash de tête (partages réseau)
    path = re.sub(r"(?<=.)/+", "/", path)

    # Lettre de lecteur Windows en majuscule
    if path[1:2] == ":":
        path = path[0].upper() + path[1:]

    return wrapper + path


def allowed_protocols() -> list:
    protocols = apply_filters("kses_allowed_protocols", list(ALLOWED_PROTOCOLS))
    return list(dict.fromkeys(protocols))


def is_mobile(user_agent) -> bool:
    user_agent = user_agent or ""
    mobile = any(marker in user_agent for marker in MOBILE_MARKERS)
    return apply_filters("app/is_mobile", mobile, user_agent)


# ---------- Paragraphes automatiques ----------

def html_split(text: str) -> list:
    """
    Sépare le texte des balises / commentaires HTML : les balises sont aux
    index impairs.
    """
    return HTML_SPLIT_RE.split(text)


def _strtr(text: str, replace_pairs: dict) -> str:
    needles = sorted(replace_pairs, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(n) for n in needles))
    return pattern.sub(lambda m: replace_pairs[m.group(0)], text)


def replace_in_html_tags(haystack: str, replace_pairs: dict) -> str:
    textarr = html_split(haystack)
    changed = False

    for i in range(1, len(textarr), 2):
        if any(needle in textarr[i] for needle in replace_pairs):
            textarr[i] = _strtr(textarr[i], replace_pairs)
            changed = True

    if changed:
        return "".join(textarr)
    return haystack


def autop(text: str, br: bool = True) -> str:
    """
    Transforme les doubles sauts de ligne en paragraphes <p>, et les sauts
    restants en <br /> (sauf dans <script>, <style> et <svg>).
    Le contenu des <pre> n'est pas touché.
    """
    pre_tags = {}

    if text.strip() == "":
        return ""

    text = text + "\n"

    if "<pre" in text:
        parts = text.split("</pre>")
        last_part = parts.pop()
        text = ""
        i = 0

        for part in parts:
            start = part.find("<pre")

            # HTML mal formé
            if start == -1:
                text += part
                continue

            name = f"<pre wp-pre-tag-{i}></pre>"
            pre_tags[name] = part[start:] + "</pre>"

            text += part[:start] + name
            i += 1

        text += last_part

    text = re.sub(r"<br\s*/?>\s*<br\s*/?>", "\n\n", text)

    text = re.sub(r"(<" + ALLBLOCKS + r"[\s/>])", r"\n\n\1", text)
    text = re.sub(r"(</" + ALLBLOCKS + r">)", r"\1\n\n", text)
    text = re.sub(r"(<hr\s*?/?>)", r"\1\n\n", text)

    text = text.replace("\r\n", "\n").replace("\r", "\n")

    text = replace_in_html_tags(text, {"\n": " <!-- wpnl --> "})

    if "<option" in text:
        text = re.sub(r"\s*<option", "<option", text)
        text = re.sub(r"</option>\s*", "</option>", text)

    if "</object>" in text:
        text = re.sub(r"(<object[^>]*>)\s*", r"\1", text)
        text = re.sub(r"\s*</object>", "</object>", text)
        text = re.sub(r"\s*(</?(?:param|embed)[^>]*>)\s*", r"\1", text)

    if "<source" in text or "<track" in text:
        text = re.sub(r"([<\[](?:audio|video)[^>\]]*[>\]])\s*", r"\1", text)
        text = re.sub(r"\s*([<\[]/(?:audio|video)[>\]])", r"\1", text)
        text = re.sub(r"\s*(<(?:source|track)[^>]*>)\s*", r"\1", text)

    if "<figcaption" in text:
        text = re.sub(r"\s*(<figcaption[^>]*>)", r"\1", text)
        text = re.sub(r"</figcaption>\s*", "</figcaption>", text)

    text = re.sub(r"\n\n+", "\n\n", text)

    chunks = [chunk for chunk in re.split(r"\n\s*\n", text) if chunk]
    text = "".join("<p>" + chunk.strip("\n") + "</p>\n" for chunk in chunks)

    text = re.sub(r"<p>\s*</p>", "", text)
    text = re.sub(r"<p>([^<]+)</(div|address|form)>", r"<p>\1</p></\2>", text)
    text = re.sub(r"<p>\s*(</?" + ALLBLOCKS + r"[^>]*>)\s*</p>", r"\1", text)
    text = re.sub(r"<p>(<li.+?)</p>", r"\1", text)
    text = re.sub(r"<p><blockquote([^>]*)>", r"<blockquote\1><p>", text, flags=re.IGNORECASE)
    text = text.replace("</blockquote></p>", "</p></blockquote>")
    text = re.sub(r"<p>\s*(</?" + ALLBLOCKS + r"[^>]*>)", r"\1", text)
    text = re.sub(r"(</?" + ALLBLOCKS + r"[^>]*>)\s*</p>", r"\1", text)

    if br:
        text = re.sub(
            r"<(script|style|svg).*?</\1>",
            lambda m: m.group(0).replace("\n", "<WPPreserveNewline />"),
            text,
            flags=re.DOTALL,
        )
        text = text.replace("<br>", "<br />").replace("<br/>", "<br />")
        text = re.sub(r"(?<!<br />)\s*\n", "<br />\n", text)
        text = text.replace("<WPPreserveNewline />", "\n")

    text = re.sub(r"(</?" + ALLBLOCKS + r"[^>]*>)\s*<br />", r"\1", text)
    text = re.sub(r"<br />(\s*</?(?:p|li|div|dl|dd|dt|th|pre|td|ul|ol)[^>]*>)", r"\1", text)
    text = re.sub(r"\n</p>$", "</p>", text)

    for name, original in pre_tags.items():
        text = text.replace(name, original)

    if "<!-- wpnl -->" in text:
        text = text.replace(" <!-- wpnl --> ", "\n").replace("<!-- wpnl -->", "\n")

    return text
