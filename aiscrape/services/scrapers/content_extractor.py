"""Helpers for pulling readable content out of retrieved HTML.

These work on the document text of a FetchedPage without an AI provider:
plain text, metadata (including OpenGraph, Twitter card and JSON-LD),
links, images, tables and forms.

Usage:
    extractor = ContentExtractor()
    page = await fetcher.fetch("https://example.com")
    meta = extractor.extract_metadata(page.content)
    links = extractor.extract_links(page.content, base_url=page.url)
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from aiscrape.exceptions import ParsingError

if TYPE_CHECKING:
    from bs4.element import Tag

logger = logging.getLogger(__name__)

# Never part of readable text
IGNORED_ELEMENTS = (
    "script",
    "style",
    "noscript",
    "iframe",
    "object",
    "embed",
    "applet",
    "meta",
    "link",
    "base",
    "title",
    "template",
)

WHITESPACE_PATTERN = re.compile(r"\s+")
BLANK_LINES_PATTERN = re.compile(r"\n{3,}")
TRUNCATION_SUFFIX = "..."


class ContentExtractor:
    """Extract text, metadata, links, images, tables and forms from HTML.

    Every method takes the raw HTML string and parses it with lxml.
    """

    PARSER = "lxml"

    def extract_text_content(
        self,
        html: str,
        *,
        preserve_formatting: bool = False,
        max_length: int | None = None,
    ) -> str:
        """Return the readable text of the document body.

        Args:
            html: Raw HTML.
            preserve_formatting: Keep one line per text node instead of
                collapsing all whitespace to single spaces.
            max_length: Cut the text to this many characters, at a word
                boundary when one lies past 80% of the limit, and append
                ``...``.
        """
        soup = self._parse(html)
        for tag in soup.find_all(list(IGNORED_ELEMENTS)):
            tag.decompose()

        root = soup.body or soup
        if preserve_formatting:
            lines = (line.strip() for line in root.get_text("\n").splitlines())
            text = "\n".join(line for line in lines if line)
            text = BLANK_LINES_PATTERN.sub("\n\n", text)
        else:
            text = WHITESPACE_PATTERN.sub(" ", root.get_text(" "))

        text = text.strip()
        if max_length is not None and len(text) > max_length:
            text = _truncate_at_word(text, max_length)
        return text

    def extract_elements(self, html: str, selector: str) -> list[Tag]:
        """Return the elements matching a CSS selector.

        Raises:
            ParsingError: If the selector is not valid CSS.
        """
        soup = self._parse(html)
        try:
            return soup.select(selector)
        except Exception as e:
            raise ParsingError(f"Invalid CSS selector {selector!r}: {e}", selector) from e

    def extract_metadata(self, html: str) -> dict[str, str]:
        """Return title, meta tags, social card tags and structured data.

        Plain ``name``/``property`` meta tags are keyed in lower case;
        ``og:*`` and ``twitter:*`` tags keep their original key. JSON-LD
        blocks are stored verbatim as ``json-ld-1``, ``json-ld-2``..., and
        microdata item types as ``microdata-type-N``.
        """
        soup = self._parse(html)
        metadata: dict[str, str] = {}

        title = soup.find("title")
        if title is not None:
            metadata["title"] = title.get_text(strip=True)

        for meta in soup.find_all("meta"):
            name = meta.get("name") or meta.get("property") or ""
            content = meta.get("content") or ""
            if name and content:
                metadata[name.lower()] = content

        for meta in soup.select('meta[property^="og:"], meta[name^="twitter:"]'):
            key = meta.get("property") or meta.get("name")
            content = meta.get("content")
            if key and content is not None:
                metadata[key] = content

        scripts = soup.find_all("script", attrs={"type": "application/ld+json"})
        for index, script in enumerate(scripts, start=1):
            metadata[f"json-ld-{index}"] = (script.string or "").strip()

        for index, item in enumerate(soup.find_all(attrs={"itemscope": True}), start=1):
            item_type = item.get("itemtype")
            if item_type:
                metadata[f"microdata-type-{index}"] = item_type

        canonical = soup.find("link", rel="canonical")
        if canonical is not None and canonical.get("href"):
            metadata["canonical"] = canonical["href"]

        if soup.html is not None and soup.html.get("lang"):
            metadata["language"] = soup.html["lang"]

        return metadata

    def extract_links(self, html: str, base_url: str | None = None) -> list[str]:
        """Return unique absolute http(s) link targets in document order.

        Relative links are resolved against ``base_url`` and dropped when
        there is none.
        """
        soup = self._parse(html)
        links: list[str] = []
        seen: set[str] = set()

        for anchor in soup.find_all("a", href=True):
            url = resolve_url(anchor["href"], base_url)
            if url is None or url in seen:
                continue
            seen.add(url)
            links.append(url)

        logger.debug("Extracted %d links", len(links))
        return links

    def extract_images(self, html: str, base_url: str | None = None) -> list[dict[str, str]]:
        """Return ``{src, alt, title}`` for each image, including srcset sources."""
        soup = self._parse(html)
        images: list[dict[str, str]] = []

        for img in soup.find_all("img", src=True):
            src = resolve_url(img["src"], base_url)
            if src is None:
                continue
            images.append(
                {
                    "src": src,
                    "alt": img.get("alt", ""),
                    "title": img.get("title", ""),
                }
            )

        for source in soup.select("picture source[srcset]"):
            for src in parse_srcset(source["srcset"], base_url):
                images.append({"src": src, "alt": "", "title": ""})

        return images

    def extract_tables(self, html: str) -> list[list[list[str]]]:
        """Return each table as rows of stripped cell text; empty tables are skipped."""
        soup = self._parse(html)
        tables: list[list[list[str]]] = []

        for table in soup.find_all("table"):
            rows = []
            for row in table.find_all("tr"):
                cells = [cell.get_text(strip=True) for cell in row.find_all(["td", "th"])]
                if cells:
                    rows.append(cells)
            if rows:
                tables.append(rows)

        return tables

    def extract_forms(self, html: str) -> list[dict[str, Any]]:
        """Return each form's action, method and input fields."""
        soup = self._parse(html)
        forms: list[dict[str, Any]] = []

        for form in soup.find_all("form"):
            fields = [
                {
                    "name": field.get("name", ""),
                    "type": field.get("type", "text"),
                    "value": field.get("value", ""),
                    "placeholder": field.get("placeholder", ""),
                }
                for field in form.find_all(["input", "textarea", "select"])
            ]
            forms.append(
                {
                    "action": form.get("action", ""),
                    "method": form.get("method", "get"),
                    "fields": fields,
                }
            )

        return forms

    def _parse(self, html: str) -> BeautifulSoup:
        try:
            return BeautifulSoup(html, self.PARSER)
        except Exception as e:
            raise ParsingError(f"Failed to parse HTML content: {e}", html) from e


def resolve_url(url: str, base_url: str | None) -> str | None:
    """Resolve ``url`` to an absolute http(s) URL, or None if that is impossible."""
    url = url.strip()
    if not url or url.startswith(("javascript:", "mailto:", "tel:", "data:", "#")):
        return None

    if url.startswith("//"):
        url = f"https:{url}"
    elif urlparse(url).scheme not in ("http", "https"):
        if base_url is None:
            return None
        url = urljoin(base_url, url)

    return url if urlparse(url).scheme in ("http", "https") else None


def parse_srcset(srcset: str, base_url: str | None = None) -> list[str]:
    """Return the unique resolved URLs listed in a ``srcset`` attribute."""
    urls: list[str] = []
    for candidate in srcset.split(","):
        parts = candidate.split()
        if not parts:
            continue
        url = resolve_url(parts[0], base_url)
        if url is not None and url not in urls:
            urls.append(url)
    return urls


def _truncate_at_word(text: str, max_length: int) -> str:
    cut = text[:max_length]
    last_space = cut.rfind(" ")
    if last_space > max_length * 0.8:
        cut = cut[:last_space]
    return cut + TRUNCATION_SUFFIX
