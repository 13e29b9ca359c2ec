"""Extraction sub-package: deterministic markup normalization and rewriting."""

from .markdown import rewrite
from .rules import DEFAULT_RULES, RewriteRule
from .shortcodes import normalize_markup
from .urlnorm import SlugCanonicalizer, SlugMapping, title_to_slug

__all__ = [
    "DEFAULT_RULES",
    "RewriteRule",
    "SlugCanonicalizer",
    "SlugMapping",
    "normalize_markup",
    "rewrite",
    "title_to_slug",
]
