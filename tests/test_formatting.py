"""Escaping, sanitizing, serialization and autop helpers."""

from datetime import datetime

import pytest
from bson.objectid import ObjectId

from utils import hooks
from utils.formatting import (
    allowed_protocols,
    autop,
    check_invalid_utf8,
    esc_attr,
    esc_html,
    esc_js,
    esc_textarea,
    html_excerpt,
    html_split,
    is_mobile,
    is_serialized,
    is_stream,
    map_deep,
    maybe_serialize,
    maybe_unserialize,
    normalize_path,
    parse_str,
    replace_in_html_tags,
    sanitize_text_field,
    sanitize_textarea_field,
    specialchars,
    strip_all_tags,
    untrailingslashit,
    url_shorten,
)

pytestmark = pytest.mark.hooks


# ---------- Sérialisation ----------

def test_is_serialized_accepts_json_containers_strings_and_null():
    """Only JSON objects, arrays, strings and null count as serialized."""
    assert is_serialized('{"a": 1}')
    assert is_serialized("[1, 2]")
    assert is_serialized('"text"')
    assert is_serialized(" null ")

    assert not is_serialized("123")
    assert not is_serialized("plain")
    assert not is_serialized("{broken")
    assert not is_serialized("")
    assert not is_serialized({"a": 1})


def test_maybe_serialize_containers_and_scalars():
    """Containers become JSON; plain scalars are left alone."""
    assert maybe_serialize({"a": [1, 2]}) == '{"a": [1, 2]}'
    assert maybe_serialize([1, "x"]) == '[1, "x"]'
    assert maybe_serialize("hello") == "hello"
    assert maybe_serialize(5) == 5


def test_already_serialized_strings_survive_a_round_trip():
    """A string that looks like JSON comes back as the same string."""
    raw = '{"a": 1}'
    stored = maybe_serialize(raw)

    assert stored != raw
    assert maybe_unserialize(stored) == raw
    assert maybe_unserialize(raw) == {"a": 1}
    assert maybe_unserialize("plain") == "plain"


def test_serialization_keeps_bson_types():
    """ObjectId and datetime survive serialization."""
    value = {"id": ObjectId("65a000000000000000000001"), "when": datetime(2024, 1, 1, 8, 30)}

    stored = maybe_serialize(value)

    assert isinstance(stored, str)
    assert maybe_unserialize(stored) == value


def test_serialization_refuses_non_string_keys():
    """Keys that JSON would turn into strings are rejected."""
    with pytest.raises(ValueError):
        maybe_serialize({1: "a"})
    with pytest.raises(ValueError):
        maybe_serialize(({"ok": True}, {"inner": {None: 1}}))


# ---------- Échappement ----------

def test_check_invalid_utf8():
    """Invalid bytes give an empty string unless stripping is requested."""
    assert check_invalid_utf8(b"\xff\xfeabc") == ""
    assert check_invalid_utf8(b"\xff\xfeabc", strip=True) == "abc"
    assert check_invalid_utf8("héllo") == "héllo"
    assert check_invalid_utf8(None) == ""


def test_specialchars_quote_styles():
    """Quote handling depends on the requested style."""
    text = "\"a\" & 'b'"
    assert specialchars(text) == "\"a\" &amp; 'b'"
    assert specialchars(text, "double") == "&quot;a&quot; &amp; 'b'"
    assert specialchars(text, "single") == "\"a\" &amp; &#039;b&#039;"
    assert specialchars(text, "quotes") == "&quot;a&quot; &amp; &#039;b&#039;"
    assert specialchars("") == ""
    assert specialchars("nothing special") == "nothing special"


def test_esc_html_does_not_double_encode_entities():
    """Valid entities are kept, bare ampersands are encoded."""
    assert esc_html("<a href='x'>&amp; & </a>") == "&lt;a href=&#039;x&#039;&gt;&amp; &amp; &lt;/a&gt;"
    assert esc_html("&#123; &bogus;") == "&#123; &amp;bogus;"


def test_esc_html_runs_through_filter(registry):
    """The esc_html filter gets the escaped and the raw text."""
    seen = []

    def spy(safe, raw):
        seen.append(raw)
        return safe.upper()

    registry.add_filter("esc_html", spy, 10, 2)

    assert esc_html("<b>") == "&LT;B&GT;"
    assert seen == ["<b>"]


def test_esc_attr_uses_attribute_escape_filter(registry):
    """esc_attr escapes quotes and applies attribute_escape."""
    assert esc_attr('say "hi"') == "say &quot;hi&quot;"

    registry.add_filter("attribute_escape", lambda safe: "[" + safe + "]")
    assert esc_attr("x") == "[x]"


def test_esc_textarea_double_encodes():
    """Existing entities are encoded again inside a textarea."""
    assert esc_textarea("&amp; <b>") == "&amp;amp; &lt;b&gt;"


def test_esc_js():
    """Quotes and newlines are made safe for inline JavaScript."""
    assert esc_js("It's \"ok\"\nline") == "It\\'s &quot;ok&quot;\\nline"
    assert esc_js("a\r\nb") == "a\\nb"
    assert esc_js("&#039;quoted&#x27;") == "\\'quoted\\'"


# ---------- Nettoyage ----------

def test_strip_all_tags_removes_script_and_comments():
    """Script contents and comments disappear along with the tags."""
    text = "<script>alert(1)</script><b>hi</b> <!-- c -->there"
    assert strip_all_tags(text) == "hi there"
    assert strip_all_tags("<p>a</p>\n\n<p>b</p>", remove_breaks=True) == "a b"


def test_html_excerpt_does_not_cut_entities():
    """A trailing partial entity is dropped before appending the suffix."""
    assert html_excerpt("<p>Hello &amp; world</p>", 8, "...") == "Hello..."
    assert html_excerpt("short", 10) == "short"


def test_sanitize_text_field():
    """Tags, extra whitespace and percent-encoded octets are removed."""
    assert sanitize_text_field("  <b>Hello</b>\n\tworld %41 ") == "Hello world"
    assert sanitize_text_field("a < b") == "a &lt; b"
    assert sanitize_text_field(["not", "a", "string"]) == ""
    assert sanitize_text_field(None) == ""


def test_sanitize_textarea_field_keeps_newlines():
    """Newlines survive in textarea values."""
    assert sanitize_textarea_field("line 1\nline 2  ") == "line 1\nline 2"


def test_sanitize_text_field_filter(registry):
    """sanitize_text_field runs through its filter."""
    registry.add_filter("sanitize_text_field", lambda value: value.lower())
    assert sanitize_text_field("HeLLo") == "hello"


# ---------- Divers ----------

def test_map_deep_walks_nested_containers():
    """The callback is applied to every leaf, container types are kept."""
    data = {"a": [1, (2, 3)], "b": 4}
    assert map_deep(data, lambda v: v * 10) == {"a": [10, (20, 30)], "b": 40}
    assert map_deep("x", str.upper) == "X"


def test_parse_str_handles_arrays_and_keys(registry):
    """Bracket notation builds lists and dicts."""
    assert parse_str("a=1&b[]=2&b[]=3&c[x]=y&empty=") == {
        "a": "1",
        "b": ["2", "3"],
        "c": {"x": "y"},
        "empty": "",
    }
    assert parse_str("") == {}

    registry.add_filter("wp_parse_str", lambda result: {**result, "extra": "1"})
    assert parse_str("a=1") == {"a": "1", "extra": "1"}


def test_untrailingslashit_and_url_shorten():
    """Scheme and www are dropped, long URLs are cut."""
    assert untrailingslashit("/path///") == "/path"
    assert untrailingslashit("C:\\dir\\") == "C:\\dir"

    assert url_shorten("http://www.example.com/") == "example.com"
    long_url = "https://www.example.com/some/very/long/path/to/a/page/"
    assert url_shorten(long_url) == "example.com/some/very/long/path/&hellip;"


def test_is_stream():
    """Known wrappers are detected."""
    assert is_stream("https://example.com")
    assert is_stream("php://memory")
    assert not is_stream("/var/www")
    assert not is_stream("custom://thing")


def test_normalize_path():
    """Backslashes, repeated slashes and drive letters are normalized."""
    assert normalize_path("c:\\www\\\\site//file") == "C:/www/site/file"
    assert normalize_path("//server//share") == "//server/share"
    assert normalize_path("php://filter//x") == "php://filter/x"
    assert normalize_path("/var//www/") == "/var/www/"


def test_allowed_protocols_are_deduplicated(registry):
    """Filters can extend the list without creating duplicates."""
    registry.add_filter("kses_allowed_protocols", lambda protocols: protocols + ["http", "ssh"])

    protocols = allowed_protocols()
    assert protocols.count("http") == 1
    assert protocols[-1] == "ssh"
    assert "mailto" in protocols


def test_is_mobile(registry):
    """Mobile user agents are detected and the result is filterable."""
    iphone = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"
    desktop = "Mozilla/5.0 (X11; Linux x86_64) Firefox/120.0"

    assert is_mobile(iphone) is True
    assert is_mobile(desktop) is False
    assert is_mobile(None) is False

    registry.add_filter("app/is_mobile", lambda mobile, ua: "Firefox" in ua, 10, 2)
    assert is_mobile(desktop) is True


# ---------- Paragraphes automatiques ----------

def test_html_split_puts_tags_at_odd_indexes():
    """Text and markup alternate in the split result."""
    parts = html_split("a<b>c</b><!-- x -->d")
    assert parts == ["a", "<b>", "c", "</b>", "", "<!-- x -->", "d"]


def test_replace_in_html_tags_only_touches_tags():
    """Replacements are limited to the inside of tags."""
    text = 'x\n<a\ntitle="y">\n</a>'
    assert replace_in_html_tags(text, {"\n": " "}) == 'x\n<a title="y">\n</a>'
    assert replace_in_html_tags("no tags", {"o": "0"}) == "no tags"


def test_autop_paragraphs_and_line_breaks():
    """Blank lines open paragraphs and single newlines become <br />."""
    assert autop("Hello\n\nWorld") == "<p>Hello</p>\n<p>World</p>\n"
    assert autop("Line1\nLine2") == "<p>Line1<br />\nLine2</p>\n"
    assert autop("Line1\nLine2", br=False) == "<p>Line1\nLine2</p>\n"
    assert autop("   \n ") == ""


def test_autop_leaves_pre_blocks_alone():
    """Content of <pre> is restored untouched."""
    result = autop("<pre>a\n\nb</pre>")
    assert "<pre>a\n\nb</pre>" in result
    assert "<p>" not in result
    assert "<br />" not in result


def test_autop_preserves_newlines_inside_script():
    """Newlines inside <script> do not become <br />."""
    result = autop("<script>var a = 1;\nvar b = 2;</script>")
    assert "var a = 1;\nvar b = 2;" in result


def test_hook_registry_is_reset_between_tests():
    """Filters registered in another test are not visible here."""
    assert hooks.has_filter("esc_html") is False
