"""Rewrite engine: normalized markup -> Markdown/MDX body.

The markup is parsed once with BeautifulSoup/lxml and rendered depth-first:
children first, then the first matching :class:`RewriteRule` for the node.
Queued footnote definitions are appended after the body, and a series of
text post-passes runs over everything outside fenced code blocks.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import CData, Comment, Declaration, Doctype, ProcessingInstruction

from blogmigrate.extractors.rules import DEFAULT_RULES, RewriteRule, image_source

if TYPE_CHECKING:
    from blogmigrate.context import TransformContext

logger = logging.getLogger(__name__)

_EXCESSIVE_BLANK_LINES_RE = re.compile(r"\n{3,}")
_TRAILING_WHITESPACE_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_LEADING_SPACE_RE = re.compile(r"^ (?=\S)", re.MULTILINE)
_WS_RE = re.compile(r"\s+")

_SKIPPED_STRINGS = (Comment, CData, Declaration, Doctype, ProcessingInstruction)

_FENCE_RE = re.compile(r"^(`{3,})[^\n]*\n.*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)

_ESCAPED_FOOTNOTE_RE = re.compile(r"\\\[\^([^\]\\\s]+)\\\]")
_FOOTNOTE_DEF_RE = re.compile(
    r"^(\[\^[^\]\s]+\]:[^\n]*)\n(?=[ \t]*\[\^[^\]\s]+\]:)", re.MULTILINE,
)
_ESCAPED_LINK_RE = re.compile(r"(?<!!)\\\[([^\[\]\n]*?)\\\]\(((?:https?://|/)[^)\s]*)\)")
_LINKED_IMAGE_RE = re.compile(r"\[(!\[(?:[^\]\\]|\\.)*\]\([^)\s]+\))\]\([^)\s]+\)")

_YOUTU_BE = r"https?://youtu\.be/([\w-]{11})[^\s)\]]*"
_YOUTUBE_WATCH = (
    r"https?://(?:www\.|m\.)?youtube\.com/watch\?(?:[^\s)\]]*?&)?v=([\w-]{11})[^\s)\]]*"
)
_VIDEO_URL = rf"(?:{_YOUTU_BE}|{_YOUTUBE_WATCH})"
_VIDEO_LINK_RE = re.compile(rf"\[[^\]\n]*\]\({_VIDEO_URL}\)")
_VIDEO_BARE_RE = re.compile(_VIDEO_URL)

_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s")
_MD_IMAGE_RE = re.compile(r"!\[((?:[^\]\\]|\\.)*)\]\(([^)\s]+)\)")
_BACKSLASH_ESCAPE_RE = re.compile(r"\\(.)")


# ---------------------------------------------------------------------------
# Tree rendering
# ---------------------------------------------------------------------------

def parse_markup(html: str) -> Tag:
    soup = BeautifulSoup(html, "lxml")
    return soup.body or soup


def escape_text(text: str) -> str:
    """Collapse whitespace and escape link brackets in a text node."""
    text = _WS_RE.sub(" ", text)
    return text.replace("[", "\\[").replace("]", "\\]")


def render_node(
    node: object,
    ctx: TransformContext,
    rules: tuple[RewriteRule, ...] = DEFAULT_RULES,
) -> str:
    if isinstance(node, NavigableString):
        if isinstance(node, _SKIPPED_STRINGS):
            return ""
        return escape_text(str(node))
    if not isinstance(node, Tag):
        return ""
    content = "".join(render_node(child, ctx, rules) for child in node.children)
    for rule in rules:
        if rule.matches(node):
            return rule.transform(node, content, ctx)
    return content


def render_fragment(
    html: str,
    ctx: TransformContext,
    rules: tuple[RewriteRule, ...] = DEFAULT_RULES,
) -> str:
    """Render a markup fragment to a single line of Markdown."""
    if not html or not html.strip():
        return ""
    text = render_node(parse_markup(html), ctx, rules)
    return _WS_RE.sub(" ", text).strip()


def render_footnotes(
    ctx: TransformContext,
    rules: tuple[RewriteRule, ...] = DEFAULT_RULES,
) -> list[str]:
    definitions: list[str] = []
    for entry in list(ctx.footnotes.values()):
        text = render_fragment(entry.body, ctx, rules).rstrip(" \u21a9\ufe0e")
        definitions.append(f"[^{entry.id}]: {text}".rstrip())
    return definitions


# ---------------------------------------------------------------------------
# Post-passes
# ---------------------------------------------------------------------------

def outside_fences(text: str, func: Callable[[str], str]) -> str:
    """Apply *func* to every stretch of *text* outside fenced code blocks."""
    parts: list[str] = []
    pos = 0
    for match in _FENCE_RE.finditer(text):
        parts.append(func(text[pos:match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(func(text[pos:]))
    return "".join(parts)


def unescape_footnote_markers(text: str) -> str:
    return _ESCAPED_FOOTNOTE_RE.sub(r"[^\1]", text)


def restore_links(text: str) -> str:
    """``\\[text\\](url)`` written literally in the source -> a real link."""
    return _ESCAPED_LINK_RE.sub(r"[\1](\2)", text)


def separate_footnote_definitions(text: str) -> str:
    return _FOOTNOTE_DEF_RE.sub("\\1\n\n", text)


def collapse_linked_images(text: str) -> str:
    """``[![alt](img)](target)`` -> ``![alt](img)``."""
    return _LINKED_IMAGE_RE.sub(r"\1", text)


def _video_tag(match: re.Match[str]) -> str:
    video_id = match.group(1) or match.group(2)
    return f'<YouTube id="{video_id}" />'


def embed_videos(text: str) -> str:
    """Replace YouTube links and bare URLs with a video component."""
    text = _VIDEO_LINK_RE.sub(_video_tag, text)
    return _VIDEO_BARE_RE.sub(_video_tag, text)


def _block_kind(line: str) -> str:
    stripped = line.lstrip()
    if stripped.startswith(">"):
        return "quote"
    if _LIST_ITEM_RE.match(line) or line[:1] in (" ", "\t"):
        return "list"
    if stripped.startswith("|"):
        return "table"
    return "text"


def separate_blocks(text: str) -> str:
    """Put a blank line between adjacent lines unless they belong together.

    Consecutive quote lines, list items (with their indented continuation
    lines) and table rows stay contiguous; everything else becomes its own
    paragraph.
    """
    out: list[str] = []
    previous: str | None = None
    for line in text.split("\n"):
        if not line.strip():
            out.append(line)
            previous = None
            continue
        kind = _block_kind(line)
        if previous is not None and (kind != previous or kind == "text"):
            out.append("")
        out.append(line)
        previous = kind
    return "\n".join(out)


def emit_image_tags(text: str, ctx: TransformContext) -> str:
    """Turn Markdown images of resolved assets into ``<Image>`` components."""
    by_target = {}
    for reference in ctx.assets.values():
        by_target[reference.source_url] = reference
        by_target[reference.local_path] = reference
    if not by_target:
        return text

    def _tag(match: re.Match[str]) -> str:
        reference = by_target.get(match.group(2))
        if reference is None:
            return match.group(0)
        alt = _BACKSLASH_ESCAPE_RE.sub(r"\1", match.group(1)).replace('"', "&quot;")
        return (
            f'<Image src="{reference.local_path}" alt="{alt}" '
            f"width={{{reference.width}}} height={{{reference.height}}} />"
        )

    return _MD_IMAGE_RE.sub(_tag, text)


def finalize(text: str, ctx: TransformContext) -> str:
    """Run every post-pass over a rendered body."""
    passes: list[Callable[[str], str]] = [
        lambda s: _LEADING_SPACE_RE.sub("", s),
        unescape_footnote_markers,
        restore_links,
        separate_footnote_definitions,
        collapse_linked_images,
        embed_videos,
        separate_blocks,
        lambda s: emit_image_tags(s, ctx),
    ]
    if ctx.canonicalizer is not None:
        passes.append(ctx.canonicalizer.canonicalize_text)
    passes.append(lambda s: _TRAILING_WHITESPACE_RE.sub("", s))
    passes.append(lambda s: _EXCESSIVE_BLANK_LINES_RE.sub("\n\n", s))
    for func in passes:
        text = outside_fences(text, func)
    return text.strip("\n").rstrip()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def rewrite(
    html: str,
    ctx: TransformContext,
    rules: tuple[RewriteRule, ...] = DEFAULT_RULES,
) -> str:
    """Convert normalized post markup into the final Markdown body.

    Footnotes already queued on *ctx* (from shortcodes) and any found in the
    markup are emitted as ``[^id]: text`` definitions after the body.
    """
    body = ""
    if html and html.strip():
        root = parse_markup(html)
        ctx.prefetch_assets([image_source(img, ctx) for img in root.find_all("img")])
        body = render_node(root, ctx, rules)
    definitions = render_footnotes(ctx, rules)
    if definitions:
        body = body.rstrip() + "\n\n" + "\n".join(definitions) + "\n"
    if not body.strip():
        return ""
    return finalize(body, ctx)
