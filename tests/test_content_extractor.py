import json
from pathlib import Path

import lxml.html

from readpage.workflows.config_builder import ConfigBuilderConfig
from readpage.workflows.content_extractor import (
    ContentExtractor,
    ContentExtractorConfig,
    find_link,
    validate_date,
)
from readpage.workflows.readability_engine import ReadabilityEngine, parse_document
from readpage.workflows.site_config import parse_lines

FIXTURES = Path(__file__).parent / "fixtures" / "site_config"

ARTICLE_HTML = """<html lang="en"><head><meta name="sponsored" content="yes"><title>Page</title></head>
<body>
<h1>My Title</h1>
<span class="byline">Jane Doe</span>
<time datetime="2023-05-01T10:00:00+02:00">May 1</time>
<article><p>First paragraph REPLACE-ME.</p><div class="ad">Buy now</div><img src="http://cdn.example.com/tracker.gif"><p>Second paragraph.</p></article>
</body></html>"""


def _extractor() -> ContentExtractor:
    return ContentExtractor(ContentExtractorConfig(config_builder=ConfigBuilderConfig(site_config=[FIXTURES])))


def _html(node) -> str:
    return lxml.html.tostring(node, encoding="unicode")


def test_site_config_rules_extract_everything() -> None:
    result = _extractor().process(ARTICLE_HTML, "http://example.com/article")

    assert result.success is True
    assert result.title == "My Title"
    assert result.authors == ["Jane Doe"]
    assert result.date == "2023-05-01T10:00:00+02:00"
    assert result.language == "en"
    assert result.is_native_ad is True
    body = _html(result.body)
    assert "First paragraph replaced." in body
    assert "Second paragraph." in body
    assert "Buy now" not in body
    assert "tracker.gif" not in body
    assert "My Title" not in body


def test_process_is_idempotent_without_tidy() -> None:
    extractor = _extractor()

    first = extractor.process(ARTICLE_HTML, "http://example.com/article", smart_tidy=False)
    second = extractor.process(ARTICLE_HTML, "http://example.com/article", smart_tidy=False)

    assert first.title == second.title
    assert first.language == second.language
    assert _html(first.body) == _html(second.body)


def test_multiple_body_matches_skip_nested_elements() -> None:
    config = parse_lines(["body: //div[@class='part']", "prune: no", "tidy: no"])
    html = "<html><body><div class='part'>A<div class='part'>nested</div></div><p>gap</p><div class='part'>B</div></body></html>"

    result = _extractor().process(html, "http://unknown.test/", site_config=config)

    assert result.body.tag == "div"
    assert len(result.body) == 2
    assert result.body.text_content() == "AnestedB"


def test_hnews_markup_is_detected() -> None:
    html = """<html><body><div class="hentry">
<h1 class="entry-title">hNews title</h1>
<div class="vcard author"><span class="fn">Ann Author</span></div>
<time pubdate datetime="2020-01-02">2020-01-02</time>
<div class="entry-content"><p>hNews body text here.</p></div>
</div></body></html>"""

    result = _extractor().process(html, "http://unknown.test/", site_config=parse_lines([]))

    assert result.title == "hNews title"
    assert result.authors == ["Ann Author"]
    assert result.date == "2020-01-02T00:00:00+00:00"
    assert "hNews body text here." in _html(result.body)


def test_instapaper_markers_are_detected() -> None:
    html = """<html><body><h1 class="instapaper_title">Insta title</h1>
<div class="instapaper_body"><p>Insta body.</p></div><div class="instapaper_ignore">skip me</div></body></html>"""

    result = _extractor().process(html, "http://unknown.test/", site_config=parse_lines([]))

    assert result.title == "Insta title"
    assert "Insta body." in _html(result.body)


def test_schema_org_body_with_readability_title() -> None:
    html = """<html><head><title>Schema Page</title></head><body>
<div itemprop="articleBody"><p>Schema body paragraph.</p></div></body></html>"""

    result = _extractor().process(html, "http://unknown.test/", site_config=parse_lines([]))

    assert result.success is True
    assert "Schema body paragraph." in _html(result.body)
    assert result.title == "Schema Page"


def test_readability_fallback_finds_main_text() -> None:
    paragraph = (
        "This is a long paragraph of article text, written to look like a real story, "
        "with several commas, clauses, and enough words to score well in the readability "
        "algorithm, which favours dense text blocks over navigation and link lists."
    )
    html = f"""<html><head><title>Fallback story</title></head><body>
<ul class="nav"><li><a href="/a">Home</a></li><li><a href="/b">About</a></li></ul>
<div class="main-content"><p>{paragraph}</p><p>{paragraph}</p><p>{paragraph}</p></div>
<div class="footer"><a href="/c">Contact</a></div></body></html>"""

    result = _extractor().process(html, "http://unknown.test/story", site_config=parse_lines([]))

    assert result.success is True
    assert "dense text blocks" in _html(result.body)
    assert result.title == "Fallback story"


def test_open_graph_and_json_ld_information() -> None:
    ld = {
        "@context": "https://schema.org",
        "@type": "NewsArticle",
        "headline": "LD headline",
        "datePublished": "2020-02-02T00:00:00Z",
        "author": [{"@type": "Person", "name": "A. Writer"}],
        "articleBody": "Body from JSON-LD.",
    }
    html = f"""<html><head>
<meta property="og:title" content="OG Title">
<meta property="og:image" content="data:image/png;base64,AAAA">
<meta property="og:image" content="http://example.net/img/1.jpg">
<meta property="og:locale" content="fr_FR">
<meta property="article:published_time" content="2021-03-04T05:06:07Z">
<script type="application/ld+json">{json.dumps(ld)}</script>
</head><body><p>nothing useful</p></body></html>"""

    result = _extractor().process(html, "http://unknown.test/", site_config=parse_lines(["skip_json_ld: no"]))

    assert result.title == "OG Title"
    assert result.image == "http://example.net/img/1.jpg"
    assert result.language == "fr_FR"
    assert result.date == "2021-03-04T05:06:07+00:00"
    assert result.authors == ["A. Writer"]
    assert "Body from JSON-LD." in _html(result.body)


def test_json_ld_can_be_skipped() -> None:
    ld = {"@type": "NewsArticle", "headline": "LD headline", "author": {"name": "Someone"}}
    html = f"""<html><head><script type="application/ld+json">{json.dumps(ld)}</script></head>
<body><article><p>Text.</p></article></body></html>"""
    config = parse_lines(["skip_json_ld: yes", "body: //article", "title: string(//nothing)", "autodetect_on_failure: no"])

    result = _extractor().process(html, "http://unknown.test/", site_config=config)

    assert result.authors == []
    assert result.title is None


def test_mismatched_find_replace_is_a_no_op() -> None:
    config = parse_lines(["find_string: a", "find_string: b", "replace_string: c", "body: //article"])
    extractor = _extractor()
    html = "<html><body><article><p>a b</p></article></body></html>"

    assert extractor.process_string_replacements(html, "http://unknown.test/", config) == html
    result = extractor.process(html, "http://unknown.test/", site_config=config)
    assert "a b" in _html(result.body)


def test_strip_rules_and_hidden_elements() -> None:
    config = parse_lines(
        [
            "body: //article",
            "strip: //p[@class='remove']",
            "strip_id_or_class: promo",
            "wrap_in(blockquote): //p[@class='quote']",
            "tidy: no",
            "prune: no",
        ]
    )
    html = """<html><body><article>
<p class="remove">gone</p><div id="promo">promo box</div>
<p style="display:none">hidden</p><p class="quote">quoted</p><a href="/x"></a><p>kept</p>
</article></body></html>"""

    body = _html(_extractor().process(html, "http://unknown.test/", site_config=config).body)

    assert "gone" not in body
    assert "promo box" not in body
    assert "hidden" not in body
    assert '<blockquote><p class="quote">quoted</p></blockquote>' in body
    assert 'href="/x"' not in body
    assert "kept" in body


def test_post_processing_of_body() -> None:
    config = parse_lines(["title: //h1", "body: //article", "tidy: no", "prune: no"])
    html = """<html><body><h1>Same Title</h1><article><h2>Same Title</h2>
<iframe src="http://video.example.com/embed/1"></iframe>
<img data-src="http://example.net/lazy.jpg">
<p>Text.</p></article></body></html>"""

    result = _extractor().process(html, "http://unknown.test/", site_config=config)
    body = result.body

    assert body.find("h2") is None
    assert body.find("iframe").text == "[embedded content]"
    img = body.find("img")
    assert img.get("src") == "http://example.net/lazy.jpg"
    assert img.get("data-src") is None


def test_noscript_image_replaces_lazy_placeholder() -> None:
    config = parse_lines(["body: //article", "tidy: no", "prune: no"])
    html = """<html><body><article><p>Text.</p><img src="placeholder.gif" data-lazy-src="http://example.net/real.jpg"><noscript><img src="http://example.net/real.jpg"></noscript></article></body></html>"""

    body = _html(_extractor().process(html, "http://unknown.test/", site_config=config).body)

    assert "placeholder.gif" not in body
    assert "noscript" not in body
    assert 'src="http://example.net/real.jpg"' in body


def test_next_page_link_respects_if_page_contains() -> None:
    html = "<html><body><article><p>Text.</p></article><a rel='next' href='page2.html'>next</a></body></html>"
    with_pager = parse_lines(["body: //article", "next_page_link: //a[@rel='next']"])
    gated = parse_lines(["body: //article", "next_page_link: //a[@rel='next']", "if_page_contains: //div[@class='pager']"])

    extractor = _extractor()

    assert extractor.process(html, "http://unknown.test/", site_config=with_pager).next_page_url == "page2.html"
    assert extractor.process(html, "http://unknown.test/", site_config=gated).next_page_url is None


def test_find_link_accepts_strings_elements_and_attributes() -> None:
    dom = parse_document("<html><body><a class='print' href='/print'>Print me</a></body></html>")
    config = parse_lines([])

    assert find_link(dom, ["string(//a[@class='print']/@href)"], config, "single_page_link") == "/print"
    assert find_link(dom, ["//a[@class='print']"], config, "single_page_link") == "/print"
    assert find_link(dom, ["//a[@class='print']/@href"], config, "single_page_link") == "/print"
    assert find_link(dom, ["//a[@class='missing']"], config, "single_page_link") is None


def test_bad_xpath_is_skipped() -> None:
    config = parse_lines(["title: //h1[", "title: //h1", "body: //article"])
    html = "<html><body><h1>Good</h1><article><p>Text.</p></article></body></html>"

    result = _extractor().process(html, "http://unknown.test/", site_config=config)

    assert result.title == "Good"


def test_validate_date() -> None:
    assert validate_date("2020-01-02") == "2020-01-02T00:00:00+00:00"
    assert validate_date("Tue, 03 Mar 2020 10:11:12 +0100") == "2020-03-03T10:11:12+01:00"
    assert validate_date("not a date at all") is None
    assert validate_date(None) is None


def test_tidy_pass_repairs_mojibake() -> None:
    engine = ReadabilityEngine("<html><body><p>caf\u00c3\u00a9\u200b</p></body></html>", "http://unknown.test/")

    assert engine.tidied is True
    assert "<p>café</p>" in engine.html

    untouched = ReadabilityEngine("<html><body><p>caf\u00c3\u00a9</p></body></html>", "http://unknown.test/", use_tidy=False)
    assert "caf\u00c3\u00a9" in untouched.html
