import lxml.html

from readpage.workflows.html_normalize import (
    decode_bytes_auto,
    inner_html,
    minimal_text_fix,
    outer_html,
    repair_markup,
    sanitize_html,
    strip_conditional_comments,
    strip_empty_nodes,
)


def test_decode_uses_header_charset_and_cp1252_for_latin1():
    body = b"\x93quoted\x94 caf\xe9"
    text = decode_bytes_auto(body, {"content-type": "text/html; charset=ISO-8859-1"})
    assert text == "“quoted” café"


def test_decode_uses_meta_charset():
    body = '<html><head><meta charset="koi8-r"></head><body>привет</body></html>'.encode("koi8-r")
    assert "привет" in decode_bytes_auto(body, {"content-type": "text/html"})


def test_decode_guesses_without_hints():
    body = "Le café est très bon à Montréal, déjà vu et préféré par tout le monde.".encode("utf-8")
    assert "café" in decode_bytes_auto(body)


def test_decode_drops_broken_tag_marker():
    assert decode_bytes_auto(b"<p>a</[>b</p>", {"content-type": "text/html; charset=utf-8"}) == "<p>ab</p>"
    assert decode_bytes_auto(b"") == ""


def test_minimal_text_fix_repairs_mojibake():
    assert minimal_text_fix("caf\u00c3\u00a9\u200b") == "café"
    assert minimal_text_fix("") == ""


def test_repair_markup_closes_tags():
    repaired = repair_markup("<p>unclosed<div>x")
    assert "<html>" in repaired
    assert "</p>" in repaired


def test_strip_empty_nodes_keeps_table_cells():
    html = "<p> </p>\n\n<div>x</div><td> </td><span>&nbsp;</span>"
    assert strip_empty_nodes(html) == "\n<div>x</div><td> </td>"


def test_strip_conditional_comments_keeps_last_html_tag():
    html = (
        '<!--[if lt IE 9]><html class="ie"><![endif]-->'
        '<!--[if gt IE 8]><!--><html class="modern"><!--<![endif]-->'
        "<head></head>"
    )
    assert strip_conditional_comments(html) == '<html class="modern"><head></head>'


def test_sanitize_html_removes_scripts_and_handlers():
    html = '<p onclick="steal()">a<script>bad()</script></p><iframe src="http://video.example.com/1"></iframe>'
    cleaned = sanitize_html(html)
    assert "onclick" not in cleaned
    assert "bad()" not in cleaned
    assert '<iframe src="http://video.example.com/1">' in cleaned
    assert sanitize_html("  ") == "  "


def test_inner_and_outer_html():
    element = lxml.html.fragment_fromstring("<div>a &amp; <b>b</b></div>")
    assert inner_html(element) == "a &amp; <b>b</b>"
    assert outer_html(element) == "<div>a &amp; <b>b</b></div>"
