"""
AppBase Text Utilities.

Normalization and sanitization helpers for content fields:
- slugify(): URL slug from a title
- expand_tags(): lowercase tags with hierarchical expansion
- normalize_keywords(): lowercase, de-duplicated search keywords
- sanitize_markdown(): escape HTML in Markdown outside fenced code blocks
- strip_html(): plain text for titles and summaries
"""

import html
import re

from markupsafe import Markup, escape


_SLUG_STRIP = re.compile(r'[^a-z0-9]+')
CODE_FENCE = '```'


def slugify(value):
    """
    Build a URL slug from free text.

    Args:
        value: Title or requested slug

    Returns:
        Lowercase slug of letters, digits and hyphens; 'post' if nothing is left
    """
    slug = _SLUG_STRIP.sub('-', (value or '').lower()).strip('-')
    return slug[:300] or 'post'


def _split(values):
    if values is None:
        return []
    if isinstance(values, str):
        return values.split(',')
    return list(values)


def expand_tags(tags):
    """
    Normalize tags and expand hierarchical ones.

    Every tag is lowercased and trimmed. A hierarchical tag 'a/b/c' yields
    each segment ('a', 'b', 'c') and each path prefix ('a/b', 'a/b/c').

    Args:
        tags: List of tags or a comma-separated string

    Returns:
        De-duplicated list in first-seen order
    """
    result = []
    seen = set()

    def add(tag):
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)

    for raw in _split(tags):
        if not isinstance(raw, str):
            continue
        parts = [part.strip() for part in raw.lower().split('/')]
        parts = [part for part in parts if part]
        for part in parts:
            add(part)
        for end in range(2, len(parts) + 1):
            add('/'.join(parts[:end]))
    return result


def normalize_tag(tag):
    """Normalize a single registry tag ('A / B' -> 'a/b')."""
    parts = [part.strip() for part in (tag or '').lower().split('/')]
    return '/'.join(part for part in parts if part)


def normalize_keywords(keywords):
    """Lowercase, trim and de-duplicate keywords."""
    result = []
    for raw in _split(keywords):
        if not isinstance(raw, str):
            continue
        keyword = raw.strip().lower()
        if keyword and keyword not in result:
            result.append(keyword)
    return result


def sanitize_markdown(body):
    """
    Escape HTML in a Markdown body, leaving fenced code blocks untouched.

    Entities already present are decoded first so that escaping is
    idempotent ('&amp;' stays '&amp;').
    """
    if not body:
        return ''
    lines = body.split('\n')
    in_fence = False
    for i, line in enumerate(lines):
        if line.lstrip().startswith(CODE_FENCE):
            in_fence = not in_fence
            continue
        if not in_fence:
            lines[i] = str(escape(html.unescape(line)))
    return '\n'.join(lines)


def strip_html(value):
    """Remove tags from a title or summary and collapse whitespace."""
    if not value:
        return ''
    return Markup(value).striptags()
