"""
DeepWiki Backend — Markdown Utilities
=======================================

What:  Text helpers for wiki pages: table-of-contents extraction, title and
       slug derivation, upload decoding, checksums.
Who:   WikiService (upload, page CRUD) and the page routes (TOC).

Heading ids must match the ids the frontend renderer puts on <h2>/<h3>
elements, otherwise TOC links point nowhere. Both sides lowercase, drop
non-word characters and join words with "-".
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Set

import frontmatter
from slugify import slugify

from deepwiki.schemas.wiki import TocHeading, TocSection

logger = logging.getLogger(__name__)

# Only H2 and H3 make it into the TOC (two-level hierarchy)
_HEADING_RE = re.compile(r"^(#{2,3})\s+(.+)$", re.MULTILINE)
_H1_RE = re.compile(r"^# (.+)$", re.MULTILINE)

# Characters the renderer drops from ids; ASCII semantics to match the browser
_NON_ID_CHARS_RE = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+", re.ASCII)

# Dropped before slugifying so "Don't Panic!" becomes "dont-panic"
_SLUG_STRIP_RE = re.compile(r"[*+~.()'\"!:@]")

# Control characters except tab, LF and CR, plus the replacement character
_DIRTY_CHARS_RE = re.compile(r"[\ufffd\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

UNTITLED = "Untitled Wiki"

# Search suggestions: bare words, and capitalised sentences ending in "."
_WORD_JUNK_RE = re.compile(r"[^\w]")
_SENTENCE_RE = re.compile(r"[A-Z][a-z]+(?:\s+[a-z]+)*\.")
_PHRASE_JUNK_RE = re.compile(r"[^\w\s]")


def heading_id(text: str) -> str:
    """Anchor id for a heading: "Getting Started!" → "getting-started"."""
    cleaned = _NON_ID_CHARS_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub("-", cleaned)


def extract_headings(markdown: str) -> List[TocSection]:
    """
    Build a two-level table of contents from markdown.

    Each H2 opens a section; H3s attach to the most recent H2. An H3 that
    appears before any H2 has no parent and is skipped.
    """
    if not markdown:
        return []

    sections: List[TocSection] = []
    current: Optional[TocSection] = None

    for match in _HEADING_RE.finditer(markdown):
        level = len(match.group(1))
        text = match.group(2).strip()
        heading = TocHeading(id=heading_id(text), text=text, level=level)

        if level == 2:
            current = TocSection(heading=heading, children=[])
            sections.append(current)
        elif current is not None:
            current.children.append(heading)

    return sections


def extract_title(content: str, filename: Optional[str] = None) -> str:
    """
    Title for a wiki, in order of preference:
        1. front-matter `title`
        2. first "# " heading
        3. filename, "getting_started.md" → "Getting Started"
        4. "Untitled Wiki"
    """
    try:
        post = frontmatter.loads(content)
        title = post.get("title")
        if title:
            return str(title).strip()
        body = post.content
    except Exception as e:
        # Broken YAML front matter should not block the upload
        logger.warning("Could not parse front matter: %s", str(e))
        body = content

    h1 = _H1_RE.search(body)
    if h1:
        return h1.group(1).strip()

    if filename:
        stem = Path(filename).stem
        words = [w for w in re.split(r"[-_]", stem) if w]
        if words:
            return " ".join(w[:1].upper() + w[1:] for w in words)

    return UNTITLED


def slugify_title(title: str) -> str:
    """URL slug for a wiki title. Falls back to "wiki" for symbol-only titles."""
    slug = slugify(_SLUG_STRIP_RE.sub("", title), lowercase=True)
    return slug or "wiki"


def page_filename(title: str) -> str:
    """Filename for a page created from a title: "My Page!" → "my-page.md"."""
    name = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"-+", "-", name).strip("-")
    name = name or "untitled"
    if not name.endswith(".md"):
        name += ".md"
    return name


def normalize_content(raw: bytes, filename: str = "") -> str:
    """
    Decode an uploaded page to text.

    Valid UTF-8 (with or without BOM) is returned as-is. Anything else is
    decoded with replacement and stripped of replacement and control
    characters, keeping tabs and line breaks.
    """
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        logger.warning("Invalid UTF-8 in %s, cleaning content: %s", filename or "upload", str(e))
        text = raw.decode("utf-8", errors="replace").lstrip("\ufeff")
        return _DIRTY_CHARS_RE.sub("", text)


def content_size(content: str) -> int:
    """Byte length of the UTF-8 encoding."""
    return len(content.encode("utf-8"))


def checksum(content: str) -> str:
    """MD5 hex digest of the UTF-8 encoding (change detection, not security)."""
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def suggest_completions(contents: Iterable[str], query: str, limit: int = 10) -> List[str]:
    """
    Search-box completions for `query` found in page bodies.

    Candidates are lowercased words that extend the query (punctuation
    stripped) and capitalised sentences that start with it. Shorter
    candidates rank first; ties are alphabetical.
    """
    prefix = query.strip().lower()
    if not prefix:
        return []

    found: Set[str] = set()
    for content in contents:
        if not content:
            continue
        for word in content.lower().split():
            word = _WORD_JUNK_RE.sub("", word)
            if word.startswith(prefix) and len(word) > len(prefix):
                found.add(word)
        for sentence in _SENTENCE_RE.findall(content):
            phrase = _PHRASE_JUNK_RE.sub("", sentence).strip()
            if phrase.lower().startswith(prefix):
                found.add(phrase)

    return sorted(found, key=lambda s: (len(s), s))[:limit]
