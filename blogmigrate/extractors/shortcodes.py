"""Pre-pass over raw post markup: shortcodes, footnotes, entities, spam, paragraphs.

Runs before the markup is parsed into a tree.  Everything here is a text
transform; the side effects are queueing footnote definitions and flagging
leftover shortcodes on the per-document
:class:`~blogmigrate.context.TransformContext`.

Anything that cannot be matched cleanly (an unterminated ``[footnote]``, an
unknown shortcode) is left in the text as-is so it shows up for review.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from blogmigrate.context import TransformContext

logger = logging.getLogger(__name__)

_GALLERY_RE = re.compile(r"\[gallery\b[^\]]*\]", re.IGNORECASE)
_CAPTION_RE = re.compile(r"\[caption\b[^\]]*\](.*?)\[/caption\]", re.IGNORECASE | re.DOTALL)
_EMBED_RE = re.compile(r"\[embed\b[^\]]*\](.*?)\[/embed\]", re.IGNORECASE | re.DOTALL)

FOOTNOTE_SHORTCODES: tuple[str, ...] = ("footnote", "citepro")
_FOOTNOTE_OPEN_RE = re.compile(
    r"\[(" + "|".join(FOOTNOTE_SHORTCODES) + r")\b[^\]]*\]", re.IGNORECASE,
)

_ENTITIES: dict[str, str] = {
    "nbsp": " ",
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
}
_ENTITY_RE = re.compile(r"&(" + "|".join(_ENTITIES) + r");")

# <a ...[text](url)...> optionally followed by its content and </a>;
# the content may not open another anchor.
_INJECTED_ANCHOR_RE = re.compile(
    r"<a\b[^>]*\[[^\]]*\]\([^)]*\)[^>]*>(?:((?:(?!<a\b).)*?)</a\s*>)?",
    re.IGNORECASE | re.DOTALL,
)
_IMAGES_ONLY_RE = re.compile(r"^(?:\s*<img\b[^>]*>)+\s*$", re.IGNORECASE)

_PRE_RE = re.compile(r"<pre\b.*?</pre\s*>", re.IGNORECASE | re.DOTALL)
_CODE_RE = re.compile(r"<(pre|code)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
# An opening [name ...] tag; footnote markers and Markdown links do not match.
_SHORTCODE_TAG_RE = re.compile(r"\[[a-z][\w-]*(?:\s[^\[\]\n]{0,200})?\](?!\()", re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n[ \t]*\n+")
_BLOCK_START_RE = re.compile(
    r"^\s*<(?:"
    r"(?:p|div|h[1-6]|ul|ol|li|dl|dt|dd|blockquote|pre|table|thead|tbody|tfoot|tr|td|th"
    r"|figure|figcaption|hr|section|article|aside|header|footer|nav|iframe|form|script|style)\b"
    r"|!--|/)",
    re.IGNORECASE,
)
_PLACEHOLDER = "\x00pre{}\x00"


def strip_galleries(text: str) -> str:
    return _GALLERY_RE.sub("", text)


def unwrap_content_shortcodes(text: str) -> str:
    """Replace ``[caption]`` / ``[embed]`` pairs with their inner content."""
    text = _CAPTION_RE.sub(lambda m: m.group(1), text)
    return _EMBED_RE.sub(lambda m: m.group(1).strip(), text)


def _find_close(text: str, start: int, name: str) -> tuple[int, int] | None:
    """Locate the ``[/name]`` matching an opening tag that ends at *start*."""
    depth = 1
    for match in re.finditer(rf"\[(/?){name}\b[^\]]*\]", text[start:], re.IGNORECASE):
        if match.group(1):
            depth -= 1
            if depth == 0:
                return start + match.start(), start + match.end()
        else:
            depth += 1
    return None


def extract_footnotes(text: str, ctx: TransformContext) -> str:
    """Swap footnote shortcodes for ``[^n]`` markers and queue their bodies.

    Numbers come from one per-document counter shared by every footnote
    shortcode flavour, in order of appearance: an outer footnote takes its
    number before any footnote nested inside its body.
    """
    out: list[str] = []
    pos = 0
    while True:
        match = _FOOTNOTE_OPEN_RE.search(text, pos)
        if match is None:
            out.append(text[pos:])
            break
        close = _find_close(text, match.end(), match.group(1).lower())
        if close is None:
            logger.warning(
                "Unterminated [%s] shortcode in %s; left verbatim", match.group(1), ctx.slug,
            )
            out.append(text[pos:match.end()])
            pos = match.end()
            continue
        number = ctx.next_footnote_number()
        body = extract_footnotes(text[match.end():close[0]], ctx)
        ctx.add_footnote(str(number), body.strip())
        out.append(text[pos:match.start()])
        out.append(f"[^{number}]")
        pos = close[1]
    return "".join(out)


def outside_code(text: str, func: Callable[[str], str]) -> str:
    """Apply *func* to every stretch of *text* outside ``<pre>``/``<code>`` elements."""
    parts: list[str] = []
    pos = 0
    for match in _CODE_RE.finditer(text):
        parts.append(func(text[pos:match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(func(text[pos:]))
    return "".join(parts)


def decode_entities(text: str) -> str:
    """Decode the handful of named entities the export uses, in one pass.

    Code samples are left encoded; the markup parser decodes them itself, so
    an escaped ``&lt;div&gt;`` stays text instead of becoming an element.
    """
    return outside_code(text, lambda s: _ENTITY_RE.sub(lambda m: _ENTITIES[m.group(1)], s))


def find_leftover_shortcodes(text: str) -> list[str]:
    """Opening shortcode tags still present in running text, in order, once each."""
    found: list[str] = []

    def _scan(segment: str) -> str:
        for match in _SHORTCODE_TAG_RE.finditer(_TAG_RE.sub(" ", segment)):
            if match.group(0) not in found:
                found.append(match.group(0))
        return segment

    outside_code(text, _scan)
    return found


def drop_injected_anchors(text: str) -> str:
    """Remove anchors whose attributes carry a Markdown link (injected spam).

    Image-only content is kept; any other content goes with the anchor.  An
    injected opening tag with no closing tag is removed on its own.
    """

    def _replace(match: re.Match[str]) -> str:
        inner = match.group(1)
        logger.debug("Dropping injected anchor: %.80s", match.group(0))
        if inner and _IMAGES_ONLY_RE.match(inner):
            return inner.strip()
        return ""

    return _INJECTED_ANCHOR_RE.sub(_replace, text)


def wrap_paragraphs(text: str) -> str:
    """Wrap bare blank-line-separated text blocks in ``<p>`` elements."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    preserved: list[str] = []

    def _protect(match: re.Match[str]) -> str:
        preserved.append(match.group(0))
        return _PLACEHOLDER.format(len(preserved) - 1)

    text = _PRE_RE.sub(_protect, text)

    blocks: list[str] = []
    for block in _BLANK_LINES_RE.split(text):
        stripped = block.strip()
        if not stripped:
            continue
        if stripped.startswith("\x00") or _BLOCK_START_RE.match(stripped):
            blocks.append(stripped)
        else:
            blocks.append(f"<p>{stripped}</p>")
    text = "\n\n".join(blocks)

    for index, original in enumerate(preserved):
        text = text.replace(_PLACEHOLDER.format(index), original)
    return text


def normalize_markup(raw: str, ctx: TransformContext) -> str:
    """Run the full pre-pass over one post body.

    Shortcodes nothing here understands stay in the text and are flagged on
    *ctx* for review, including those inside footnote bodies.
    """
    if not raw or not raw.strip():
        return ""
    text = strip_galleries(raw)
    text = unwrap_content_shortcodes(text)
    text = extract_footnotes(text, ctx)
    text = decode_entities(text)
    text = drop_injected_anchors(text)
    text = wrap_paragraphs(text)
    for source in (text, *(entry.body for entry in ctx.footnotes.values())):
        for tag in find_leftover_shortcodes(source):
            ctx.flag_shortcode(tag)
    return text
