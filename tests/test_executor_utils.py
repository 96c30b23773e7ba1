import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent.executor import alternative_selectors, build_style_css, normalize_url
from page_agent.models import ElementAttributes, ElementDescriptor, PageSnapshot


def test_normalize_url_adds_https_when_scheme_missing():
    assert normalize_url(" youtube.com ") == "https://youtube.com"
    assert normalize_url("http://example.test/a") == "http://example.test/a"
    assert normalize_url("") == ""


def test_build_style_css_presets():
    assert build_style_css('{"type": "enlarge-text", "scale": 1.5}') == (
        "apply",
        "body * { font-size: 1.5em !important; }",
    )
    assert build_style_css('{"type": "enlarge-text"}')[1] == "body * { font-size: 1.2em !important; }"
    assert "font-weight: 600" in build_style_css('{"type": "bold-text"}')[1]
    assert "contrast(1.2)" in build_style_css('{"type": "high-contrast"}')[1]
    assert build_style_css('{"type": "reset"}') == ("reset", None)
    assert build_style_css('{"css": "p { color: red; }"}') == ("apply", "p { color: red; }")


def test_build_style_css_treats_unparseable_payload_as_raw_css():
    assert build_style_css("h1 { letter-spacing: 2px; }") == ("apply", "h1 { letter-spacing: 2px; }")


def test_build_style_css_unknown_preset_has_no_css():
    assert build_style_css('{"type": "sparkles"}') == ("apply", None)


def test_alternative_selectors_match_failed_element_words():
    snapshot = PageSnapshot(
        url="https://example.test",
        elements=[
            ElementDescriptor(id="el-0", tag="button", text="Sign in"),
            ElementDescriptor(id="el-1", tag="a", text="Sign in with Google"),
            ElementDescriptor(id="el-2", tag="input", attributes=ElementAttributes(placeholder="Search")),
        ],
    )

    assert alternative_selectors(snapshot, "el-0") == ["el-1"]
    assert alternative_selectors(snapshot, "search box") == ["el-2"]
    assert alternative_selectors(None, "el-0") == []
