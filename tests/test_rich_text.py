from nexusdash.utils.rich_text import rich_text_to_plain_text, sanitize_rich_text


def test_sanitize_keeps_allowed_markup_and_strips_scripts():
    value = (
        '<p>Hello <strong>world</strong><script>alert(1)</script> '
        '<a href="https://example.com">link</a></p>'
    )
    sanitized = sanitize_rich_text(value)

    assert "<p>" in sanitized
    assert "<strong>world</strong>" in sanitized
    assert 'href="https://example.com"' in sanitized
    assert "<script>" not in sanitized
    assert "alert(1)" not in sanitized


def test_sanitize_drops_disallowed_attributes_and_schemes():
    sanitized = sanitize_rich_text(
        '<p onclick="x()">Hi <a href="javascript:alert(1)">bad</a><img src="x.png"></p>'
    )

    assert "onclick" not in sanitized
    assert "javascript:" not in sanitized
    assert "<img" not in sanitized
    assert "bad" in sanitized


def test_sanitize_returns_none_without_visible_text():
    assert sanitize_rich_text("   ") is None
    assert sanitize_rich_text("") is None
    assert sanitize_rich_text(None) is None
    assert sanitize_rich_text("<p><br/></p>") is None
    assert sanitize_rich_text("<p>&nbsp;</p>") is None


def test_rich_text_to_plain_text():
    assert rich_text_to_plain_text("<h1>Hello</h1><p>there   team</p>") == "Hellothere team"
    assert rich_text_to_plain_text("<p>a&nbsp;&amp;&nbsp;b</p>") == "a & b"
    assert rich_text_to_plain_text(None) == ""
