from readpage.workflows.site_config import SiteConfig, merge_config, parse_lines, parse_text


def test_parse_lines_collects_commands() -> None:
    config = parse_text(
        """
# comment
title: //h1
title: //h2[@class="headline"]
body: //div[@id="story"]
strip_attr: //img/@style
strip_id_or_class: promo
tidy: no
prune: yes
autodetect_on_failure: false
parser: html5lib
src_lazy_load_attr: data-lazy
skip_json_ld: yes
requires_login: true
login_extra_fields: foo=bar
test_url: http://example.com/article
unknown_command: whatever
this line has no colon
"""
    )

    assert config.title == ["//h1", '//h2[@class="headline"]']
    assert config.body == ['//div[@id="story"]']
    assert config.strip == ["//img/@style"]
    assert config.strip_id_or_class == ["promo"]
    assert config.tidy() is False
    assert config.prune() is True
    assert config.autodetect_on_failure() is False
    assert config.parser() == "html5lib"
    assert config.src_lazy_load_attr == "data-lazy"
    assert config.skip_json_ld is True
    assert config.requires_login is True
    assert config.login_extra_fields == ["foo=bar"]
    assert config.test_url == ["http://example.com/article"]


def test_unset_scalars_resolve_to_defaults() -> None:
    config = SiteConfig()

    assert config.tidy_flag is None
    assert config.tidy() is True
    assert config.prune() is True
    assert config.autodetect_on_failure() is True
    assert config.parser() == "libxml"


def test_replace_string_sugar_keeps_pairs_aligned() -> None:
    config = parse_lines(
        [
            "find_string: <b>",
            "replace_string: <strong>",
            "replace_string(<amp-img): <img",
        ]
    )

    assert config.find_replace_pairs() == [("<b>", "<strong>"), ("<amp-img", "<img")]


def test_mismatched_find_replace_lists_are_dropped(caplog) -> None:
    config = parse_lines(["find_string: a", "find_string: b", "replace_string: c"])

    assert config.find_string == []
    assert config.replace_string == []
    assert "size mismatch" in caplog.text


def test_http_header_and_wrap_in() -> None:
    config = parse_lines(
        [
            "http_header(User-Agent): Bot/1.0",
            "http_header(x-custom): ignored",
            "wrap_in(blockquote): //div[@class='quote']",
            "wrap_in(span): //div",
        ]
    )

    assert config.http_header == {"user-agent": "Bot/1.0"}
    assert config.wrap_in == {"blockquote": "//div[@class='quote']"}


def test_if_page_contains_attaches_to_latest_link_rule() -> None:
    config = parse_lines(
        [
            "next_page_link: //a[@rel='next']",
            "if_page_contains: //div[@class='pager']",
            "single_page_link: //a[@class='print']",
            "if_page_contains: //div[@class='printable']",
        ]
    )

    assert config.get_if_page_contains_condition("single_page_link", "//a[@class='print']") == "//div[@class='printable']"
    assert config.get_if_page_contains_condition("next_page_link", "//a[@rel='next']") == "//div[@class='pager']"
    assert config.get_if_page_contains_condition("next_page_link", "//a[@class='print']") is None


def test_merge_config_unions_lists_and_keeps_current_scalars() -> None:
    current = parse_lines(["title: //h1", "tidy: no", "http_header(user-agent): Current", "find_string: x", "replace_string: 1"])
    new = parse_lines(
        [
            "title: //h1",
            "title: //h2",
            "tidy: yes",
            "prune: no",
            "http_header(user-agent): New",
            "http_header(referer): http://ref/",
            "find_string: x",
            "replace_string: 2",
            "find_string: y",
            "replace_string: 3",
        ]
    )

    merged = merge_config(current, new)

    assert merged is current
    assert merged.title == ["//h1", "//h2"]
    assert merged.tidy() is False
    assert merged.prune() is False
    assert merged.http_header == {"user-agent": "Current", "referer": "http://ref/"}
    assert merged.find_replace_pairs() == [("x", "1"), ("y", "3")]


def test_to_dict_uses_command_names() -> None:
    config = parse_lines(["tidy: no", "parser: html5lib", "body: //article"])

    data = config.to_dict()

    assert data["tidy"] is False
    assert data["parser"] == "html5lib"
    assert data["autodetect_on_failure"] is None
    assert data["body"] == ["//article"]


def test_copy_is_deep() -> None:
    config = parse_lines(["body: //article"])
    clone = config.copy()
    clone.body.append("//main")

    assert config.body == ["//article"]
