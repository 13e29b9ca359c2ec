"""Tests for the raw-markup pre-pass (shortcodes, footnotes, entities, spam)."""

from __future__ import annotations

from blogmigrate.context import TransformContext
from blogmigrate.extractors.shortcodes import (
    decode_entities,
    drop_injected_anchors,
    extract_footnotes,
    find_leftover_shortcodes,
    normalize_markup,
    strip_galleries,
    unwrap_content_shortcodes,
    wrap_paragraphs,
)


def _ctx() -> TransformContext:
    return TransformContext(slug="post")


class TestGalleryAndWrappers:
    def test_gallery_removed_without_residue(self):
        assert strip_galleries('A[gallery ids="1,2,3"]B') == "AB"

    def test_gallery_only_body_is_empty(self):
        assert normalize_markup('[gallery ids="1,2,3"]', _ctx()) == ""

    def test_caption_unwrapped(self):
        text = '[caption id="attachment_5" align="alignleft"]<img src="a.jpg"> A cat[/caption]'
        assert unwrap_content_shortcodes(text) == '<img src="a.jpg"> A cat'

    def test_embed_unwrapped_and_trimmed(self):
        assert unwrap_content_shortcodes("[embed] https://youtu.be/abc [/embed]") == "https://youtu.be/abc"

    def test_unknown_shortcode_left_verbatim(self):
        assert "[contact-form]" in normalize_markup("Say hi [contact-form]", _ctx())


class TestFootnotes:
    def test_markers_numbered_from_one(self):
        ctx = _ctx()
        out = extract_footnotes("a[footnote]x[/footnote] b[footnote]y[/footnote]", ctx)
        assert out == "a[^1] b[^2]"
        assert [(f.id, f.body) for f in ctx.footnotes.values()] == [("1", "x"), ("2", "y")]

    def test_mixed_variants_share_counter(self):
        ctx = _ctx()
        out = extract_footnotes(
            "[citepro]c1[/citepro][footnote]f1[/footnote][citepro]c2[/citepro]", ctx,
        )
        assert out == "[^1][^2][^3]"
        assert list(ctx.footnotes) == ["1", "2", "3"]

    def test_nested_outer_numbered_first(self):
        ctx = _ctx()
        out = extract_footnotes("[footnote]outer[footnote]inner[/footnote][/footnote]", ctx)
        assert out == "[^1]"
        assert ctx.footnotes["1"].body == "outer[^2]"
        assert ctx.footnotes["2"].body == "inner"

    def test_unterminated_left_verbatim(self):
        ctx = _ctx()
        out = extract_footnotes("text[footnote]never closed", ctx)
        assert out == "text[footnote]never closed"
        assert ctx.footnotes == {}

    def test_entities_in_body_preserved_until_render(self):
        ctx = _ctx()
        normalize_markup("x[footnote]A &amp; B[/footnote]", ctx)
        assert ctx.footnotes["1"].body == "A &amp; B"

    def test_numbering_scoped_per_context(self):
        first, second = _ctx(), _ctx()
        extract_footnotes("[footnote]a[/footnote]", first)
        assert extract_footnotes("[footnote]b[/footnote]", second) == "[^1]"


class TestEntities:
    def test_named_entities_decoded(self):
        assert decode_entities("a&nbsp;b &amp; &lt;c&gt; &quot;d&quot;") == 'a b & <c> "d"'

    def test_single_pass(self):
        assert decode_entities("&amp;lt;") == "&lt;"

    def test_unknown_entity_untouched(self):
        assert decode_entities("&hellip;") == "&hellip;"

    def test_code_samples_left_encoded(self):
        text = '<pre><code>&lt;b class=&quot;x&quot;&gt;</code></pre> &amp; <code>&lt;i&gt;</code>'
        assert decode_entities(text) == '<pre><code>&lt;b class=&quot;x&quot;&gt;</code></pre> & <code>&lt;i&gt;</code>'


class TestInjectedAnchors:
    def test_href_with_markdown_link_removed(self):
        html = '<p>ok <a href="http://x/[buy](http://spam/)">cheap stuff</a></p>'
        out = drop_injected_anchors(html)
        assert "cheap stuff" not in out
        assert "spam" not in out
        assert "ok" in out

    def test_title_with_markdown_link_removed(self):
        html = '<a href="/fine" title="[x](http://spam/)">text</a>'
        assert drop_injected_anchors(html) == ""

    def test_image_children_kept(self):
        html = '<a href="[x](http://spam/)"><img src="a.jpg"></a>'
        assert drop_injected_anchors(html) == '<img src="a.jpg">'

    def test_clean_anchor_untouched(self):
        html = '<a href="https://example.com/">fine</a>'
        assert drop_injected_anchors(html) == html


class TestLeftoverShortcodes:
    def test_unknown_shortcode_flagged(self, caplog):
        ctx = _ctx()
        out = normalize_markup("Say hi [contact-form id=3] or [contact-form id=3]", ctx)
        assert "[contact-form id=3]" in out
        assert ctx.unrecognized_shortcodes == ["[contact-form id=3]"]
        assert "contact-form" in caplog.text

    def test_markers_links_and_closers_not_flagged(self):
        text = "a[^1] [x](https://y.org) [/column] [1] <img alt=\"[photo]\">"
        assert find_leftover_shortcodes(text) == []

    def test_code_samples_not_flagged(self):
        assert find_leftover_shortcodes("<pre>[php]echo 1;[/php]</pre><code>[x]</code>") == []

    def test_shortcode_inside_footnote_flagged(self):
        ctx = _ctx()
        normalize_markup("a[footnote]see [button url=x][/footnote]", ctx)
        assert ctx.unrecognized_shortcodes == ["[button url=x]"]

    def test_clean_body_flags_nothing(self, legacy_post_html):
        ctx = _ctx()
        normalize_markup(legacy_post_html, ctx)
        assert ctx.unrecognized_shortcodes == []


class TestParagraphs:
    def test_bare_blocks_wrapped(self):
        assert wrap_paragraphs("one\n\ntwo") == "<p>one</p>\n\n<p>two</p>"

    def test_block_elements_not_wrapped(self):
        assert wrap_paragraphs("<div>x</div>\n\ntext") == "<div>x</div>\n\n<p>text</p>"

    def test_crlf_normalized(self):
        assert wrap_paragraphs("a\r\n\r\nb") == "<p>a</p>\n\n<p>b</p>"

    def test_pre_blank_lines_preserved(self):
        html = "<pre>line 1\n\nline 2</pre>"
        assert wrap_paragraphs(html) == html


class TestNormalizeMarkup:
    def test_full_pass(self, legacy_post_html):
        ctx = _ctx()
        out = normalize_markup(legacy_post_html, ctx)
        assert "gallery" not in out
        assert "[^1]" in out and "[^2]" in out
        assert "cheap pills" not in out
        assert "Tom & Jerry forever." in out
        assert out.startswith("<p>Welcome")

    def test_empty_body(self):
        assert normalize_markup("   ", _ctx()) == ""
