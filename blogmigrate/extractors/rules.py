"""Ordered rewrite rules: one parsed markup node -> one Markdown fragment.

Each :class:`RewriteRule` pairs a predicate with a transform.  The engine in
:mod:`blogmigrate.extractors.markdown` renders a node's children first and
then applies the first rule whose predicate accepts the node, so every
transform receives the already-rendered children as ``content``.

Order matters: structural matches that are more specific come first (a
footnote ``<sup>`` before generic inline handling, a citation-bearing quote
before plain containers), and :data:`FALLBACK` always matches last.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from bs4 import Tag

from blogmigrate.assets import url_scheme

if TYPE_CHECKING:
    from markdownify import MarkdownConverter  # type: ignore[import-untyped]

    from blogmigrate.context import TransformContext

logger = logging.getLogger(__name__)

Predicate = Callable[[Tag], bool]
Transform = Callable[[Tag, str, "TransformContext"], str]

_WS_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")
_LEADING_SPACE_RE = re.compile(r"^ (?=\S)", re.MULTILINE)
_CITE_MARKUP_RE = re.compile(r"<cite>.*?</cite>", re.DOTALL)
_MD_LINK_IN_ATTR_RE = re.compile(r"\[[^\]]*\]\([^)]*\)")
_YOUTUBE_EMBED_RE = re.compile(
    r"^(?:https?:)?//(?:www\.)?youtube(?:-nocookie)?\.com/embed/([\w-]{11})",
)

_BLOCK_CONTAINERS: frozenset[str] = frozenset(
    {
        "div", "section", "article", "main", "aside", "header", "footer",
        "figure", "figcaption", "center", "address", "details", "summary",
        "dl", "dt", "dd", "nav",
    },
)
_DROPPED: frozenset[str] = frozenset(
    {"script", "style", "noscript", "template", "head", "title", "meta", "link"},
)


@dataclass(frozen=True)
class RewriteRule:
    """A named ``(predicate, transform)`` pair."""

    name: str
    predicate: Predicate
    transform: Transform

    def matches(self, node: Tag) -> bool:
        return self.predicate(node)


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------

def class_tokens(node: Tag) -> list[str]:
    """Return the node's class tokens, lowercased, in document order."""
    classes = node.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return [c.lower() for c in classes]


def has_class(node: Tag, *fragments: str) -> bool:
    """True if any class token contains any of *fragments*."""
    return any(f in token for token in class_tokens(node) for f in fragments)


def detect_language(node: Tag | None) -> str:
    """Extract the ``language-*`` hint from a node's class list."""
    if node is None:
        return ""
    for cls in class_tokens(node):
        if cls.startswith("language-"):
            return cls[len("language-"):]
    return ""


def _wrap_inline(content: str, marker: str) -> str:
    """Wrap *content* in *marker*, keeping surrounding whitespace outside."""
    inner = content.strip()
    if not inner:
        return content
    lead = " " if content[:1].isspace() else ""
    trail = " " if content[-1:].isspace() else ""
    return f"{lead}{marker}{inner}{marker}{trail}"


def _block(content: str) -> str:
    inner = content.strip("\n")
    if not inner.strip():
        return ""
    return f"\n\n{inner.strip()}\n\n"


def _quote_ancestor(node: Tag) -> Tag | None:
    for parent in node.parents:
        if isinstance(parent, Tag) and _is_quote(parent):
            return parent
    return None


def _has_markdown_link_attr(node: Tag) -> bool:
    for value in node.attrs.values():
        if isinstance(value, list):
            value = " ".join(value)
        if isinstance(value, str) and _MD_LINK_IN_ATTR_RE.search(value):
            return True
    return False


def _only_images(node: Tag) -> bool:
    children = [
        c for c in node.children
        if isinstance(c, Tag) or str(c).strip()
    ]
    return bool(children) and all(isinstance(c, Tag) and c.name == "img" for c in children)


def image_source(node: Tag, ctx: TransformContext) -> str:
    """Absolute URL of an ``<img>``, honouring lazy-load attributes."""
    src = ""
    for attr in ("src", "data-src", "data-lazy-src", "data-original"):
        value = node.get(attr)
        if isinstance(value, str) and value.strip():
            src = value.strip()
            break
    if src.startswith("//"):
        return f"https:{src}"
    if src.startswith("/") and ctx.canonicalizer and ctx.canonicalizer.primary_host:
        return f"https://{ctx.canonicalizer.primary_host}{src}"
    return src


def _safe_target(href: str) -> str:
    return href.replace(" ", "%20").replace("(", "%28").replace(")", "%29")


# ---------------------------------------------------------------------------
# 1. Footnote marker
# ---------------------------------------------------------------------------

def _is_footnote_marker(node: Tag) -> bool:
    return node.name == "sup" and has_class(node, "footnote")


def _footnote_marker(node: Tag, content: str, ctx: TransformContext) -> str:
    ref = _WS_RE.sub("", node.get_text()).strip("[]()")
    return f"[^{ref}]" if ref else content


# ---------------------------------------------------------------------------
# 2. Footnote container
# ---------------------------------------------------------------------------

def _is_footnote_container(node: Tag) -> bool:
    return node.name == "div" and has_class(node, "footnotes", "footnote-content")


def _footnote_container(node: Tag, content: str, ctx: TransformContext) -> str:
    items = node.find_all(
        lambda t: t.name in ("li", "div") and "footnote" in str(t.get("id") or ""),
    )
    if not items:
        items = node.find_all("li")
    if not items:
        return _block(content)
    for index, item in enumerate(items, start=1):
        footnote_id = _NON_DIGIT_RE.sub("", str(item.get("id") or "")) or str(index)
        ctx.add_footnote(footnote_id, item.decode_contents())
    # Definitions are emitted with the deferred footnote block after the body.
    return "\n\n"


# ---------------------------------------------------------------------------
# 3. Shortcode / plugin output container
# ---------------------------------------------------------------------------

def _is_shortcode_container(node: Tag) -> bool:
    return node.name == "div" and has_class(node, "shortcode", "plugin-output")


def _shortcode_container(node: Tag, content: str, ctx: TransformContext) -> str:
    class_name = " ".join(class_tokens(node)).replace("--", "- -")
    return f"\n\n<!-- shortcode: {class_name} -->\n{content.strip()}\n\n"


# ---------------------------------------------------------------------------
# 4. Quotes
# ---------------------------------------------------------------------------

def _is_quote(node: Tag) -> bool:
    return node.name == "blockquote" or (
        node.name == "div" and has_class(node, "pullquote", "quote")
    )


def _quote(node: Tag, content: str, ctx: TransformContext) -> str:
    cite = next(
        (c for c in node.find_all("cite") if _quote_ancestor(c) is node),
        None,
    )
    citation = _WS_RE.sub(" ", cite.get_text()).strip() if cite else ""
    body = _CITE_MARKUP_RE.sub("", content)
    body = _LEADING_SPACE_RE.sub("", body).strip()
    body = re.sub(r"\n{3,}", "\n\n", body)
    if not body and not citation:
        return ""
    lines = [f"> {line.rstrip()}" if line.strip() else ">" for line in body.split("\n")]
    if citation:
        if body:
            lines.append(">")
        lines.append(f"> — {citation}")
    return "\n\n" + "\n".join(lines) + "\n\n"


# ---------------------------------------------------------------------------
# 5. Tables
# ---------------------------------------------------------------------------

def table_to_markdown(html: str) -> str:
    """Generic table conversion, delegated to markdownify."""
    from markdownify import markdownify  # type: ignore[import-untyped]

    return markdownify(
        html,
        heading_style="ATX",
        bullets="-",
        strip=["script", "style"],
    ).strip()


def _table(node: Tag, content: str, ctx: TransformContext) -> str:
    markdown = table_to_markdown(str(node))
    return f"\n\n{markdown}\n\n" if markdown else ""


# ---------------------------------------------------------------------------
# 6. Code blocks
# ---------------------------------------------------------------------------

def _is_code_block(node: Tag) -> bool:
    return node.name == "pre" or (
        node.name == "div" and has_class(node, "highlight", "syntax")
    )


def _code_block(node: Tag, content: str, ctx: TransformContext) -> str:
    code = node.find("code")
    language = detect_language(code) or detect_language(node)
    text = (code if code is not None else node).get_text().strip("\n")
    fence = "```"
    while fence in text:
        fence += "`"
    return f"\n\n{fence}{language}\n{text}\n{fence}\n\n"


# ---------------------------------------------------------------------------
# 7. Highlight / emphasis spans
# ---------------------------------------------------------------------------

def _is_styled_span(node: Tag) -> bool:
    return node.name == "span" and has_class(node, "highlight", "emphasis")


def _styled_span(node: Tag, content: str, ctx: TransformContext) -> str:
    if has_class(node, "highlight"):
        return _wrap_inline(content, "**")
    return _wrap_inline(content, "*")


# ---------------------------------------------------------------------------
# 8. Images
# ---------------------------------------------------------------------------

def _image(node: Tag, content: str, ctx: TransformContext) -> str:
    src = image_source(node, ctx)
    if not src:
        return ""
    alt = _WS_RE.sub(" ", str(node.get("alt") or "")).strip()
    alt = alt.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")
    target = src
    if url_scheme(src) in ("http", "https"):
        reference = ctx.resolve_asset(src)
        if reference is not None:
            target = reference.local_path
    return f"![{alt}]({_safe_target(target)})"


# ---------------------------------------------------------------------------
# 9. Anchors
# ---------------------------------------------------------------------------

def _is_injected_anchor(node: Tag) -> bool:
    return node.name == "a" and _has_markdown_link_attr(node)


def _injected_anchor(node: Tag, content: str, ctx: TransformContext) -> str:
    logger.debug("Dropping injected anchor in %s", ctx.slug)
    return content.strip() if _only_images(node) else ""


def _anchor(node: Tag, content: str, ctx: TransformContext) -> str:
    href = str(node.get("href") or "").strip()
    text = content.strip()
    if not text:
        return ""
    if not href or href.startswith("javascript:"):
        return content
    if ctx.canonicalizer is not None and ctx.canonicalizer.is_internal(href):
        href = ctx.canonicalizer.canonicalize(href)
    lead = " " if content[:1].isspace() else ""
    trail = " " if content[-1:].isspace() else ""
    return f"{lead}[{text}]({_safe_target(href)}){trail}"


# ---------------------------------------------------------------------------
# 10. Generic fallback
# ---------------------------------------------------------------------------

_HEADING_RE = re.compile(r"^h\d$")
_CONVERTER_ALIASES: dict[str, str] = {"strike": "del"}
_CONVERTED: frozenset[str] = frozenset(
    {
        "h1", "h2", "h3", "h4", "h5", "h6", "p", "br", "hr",
        "strong", "b", "em", "i", "del", "s", "strike", "code",
        "ul", "ol", "li",
    },
)


@lru_cache(maxsize=1)
def _converter() -> MarkdownConverter:
    from markdownify import MarkdownConverter  # type: ignore[import-untyped]

    return MarkdownConverter(heading_style="ATX", bullets="-")


def _parent_tags(node: Tag) -> set[str]:
    """The ancestor context markdownify passes to its ``convert_<tag>`` hooks."""
    tags: set[str] = set()
    for parent in node.parents:
        name = parent.name
        if not name:
            continue
        tags.add(name)
        if _HEADING_RE.match(name) or name in ("td", "th"):
            tags.add("_inline")
        if name in ("pre", "code", "kbd", "samp"):
            tags.add("_noformat")
    return tags


def convert_element(node: Tag, content: str) -> str:
    """Apply markdownify's conversion for *node* to already-rendered *content*."""
    name = node.name or ""
    convert = _converter().get_conv_fn_cached(_CONVERTER_ALIASES.get(name, name))
    if convert is None:
        return content
    if _HEADING_RE.match(name) and not content.strip():
        return ""
    if name == "code":
        content = node.get_text()
    elif name in ("ul", "ol", "li"):
        content = _LEADING_SPACE_RE.sub("", content)
    return convert(node, content, parent_tags=_parent_tags(node))


def _iframe(node: Tag) -> str:
    src = str(node.get("src") or "").strip()
    match = _YOUTUBE_EMBED_RE.match(src)
    if match:
        return f"\n\nhttps://www.youtube.com/watch?v={match.group(1)}\n\n"
    return f"\n\n{src}\n\n" if src else ""


def _fallback(node: Tag, content: str, ctx: TransformContext) -> str:
    name = node.name or ""
    if name in _DROPPED:
        return ""
    if name in _CONVERTED:
        return convert_element(node, content)
    if name == "cite":
        if _quote_ancestor(node) is not None:
            return f"<cite>{content.strip()}</cite>"
        return _wrap_inline(content, "*")
    if name == "iframe":
        return _iframe(node)
    if name in _BLOCK_CONTAINERS:
        return _block(content)
    return content


FOOTNOTE_MARKER = RewriteRule("footnote_marker", _is_footnote_marker, _footnote_marker)
FOOTNOTE_CONTAINER = RewriteRule(
    "footnote_container", _is_footnote_container, _footnote_container,
)
SHORTCODE_CONTAINER = RewriteRule(
    "shortcode_container", _is_shortcode_container, _shortcode_container,
)
QUOTE = RewriteRule("quote", _is_quote, _quote)
TABLE = RewriteRule("table", lambda node: node.name == "table", _table)
CODE_BLOCK = RewriteRule("code_block", _is_code_block, _code_block)
STYLED_SPAN = RewriteRule("styled_span", _is_styled_span, _styled_span)
IMAGE = RewriteRule("image", lambda node: node.name == "img", _image)
INJECTED_ANCHOR = RewriteRule("injected_anchor", _is_injected_anchor, _injected_anchor)
ANCHOR = RewriteRule("anchor", lambda node: node.name == "a", _anchor)
FALLBACK = RewriteRule("fallback", lambda node: True, _fallback)

DEFAULT_RULES: tuple[RewriteRule, ...] = (
    FOOTNOTE_MARKER,
    FOOTNOTE_CONTAINER,
    SHORTCODE_CONTAINER,
    QUOTE,
    TABLE,
    CODE_BLOCK,
    STYLED_SPAN,
    IMAGE,
    INJECTED_ANCHOR,
    ANCHOR,
    FALLBACK,
)


def first_match(node: Tag, rules: tuple[RewriteRule, ...] = DEFAULT_RULES) -> RewriteRule | None:
    """Return the rule that would render *node*."""
    for rule in rules:
        if rule.matches(node):
            return rule
    return None
