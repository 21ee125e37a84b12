"""Text extraction for local files: plain text, PDF (pypdf) and HTML (bs4 + html2text)."""

from __future__ import annotations

from pathlib import Path

import html2text
import pypdf
from bs4 import BeautifulSoup

from sourcehive.db.models import SourceType

PLAIN_SUFFIXES = frozenset({".txt", ".md", ".markdown", ".rst"})
HTML_SUFFIXES = frozenset({".html", ".htm"})
PDF_SUFFIXES = frozenset({".pdf"})
SUPPORTED_SUFFIXES = PLAIN_SUFFIXES | HTML_SUFFIXES | PDF_SUFFIXES

# Elements that never carry readable text
_STRIP_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside")

_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


def source_type_for(path: Path) -> SourceType:
    """Saved web pages are snapshots; every other local file is an artifact."""
    if path.suffix.lower() in HTML_SUFFIXES:
        return SourceType.SNAPSHOT
    return SourceType.ARTIFACT


def extract_text(path: Path) -> tuple[str, str]:
    """Return ``(title, text)`` for the file at *path*.

    Raises:
        ValueError: If the file type is not supported.
        FileNotFoundError: If *path* does not exist.
    """
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(
            f"Unsupported file type '{suffix or path.name}'. "
            f"Accepted: {', '.join(sorted(SUPPORTED_SUFFIXES))}"
        )
    if suffix in PDF_SUFFIXES:
        return path.stem, pdf_to_text(path)
    raw = path.read_text(encoding="utf-8", errors="replace")
    if suffix in HTML_SUFFIXES:
        return html_to_text(raw, default_title=path.stem)
    return path.stem, raw


def pdf_to_text(path: Path) -> str:
    """Page text joined by blank lines; pages without text (scans) are skipped."""
    reader = pypdf.PdfReader(str(path))
    parts: list[str] = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


def html_to_text(html: str, default_title: str = "") -> tuple[str, str]:
    """Strip boilerplate elements and convert the remaining HTML to plain text."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(_STRIP_TAGS):
        tag.decompose()
    text = _h2t.handle(str(soup)).strip()
    return title or default_title, text
