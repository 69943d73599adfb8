"""Web page extraction.

Fetching tries a fixed sequence of request-header profiles (a desktop
Chrome browser, a desktop Firefox browser, then a minimal bot user agent)
until one returns an HTML page.  Each attempt has its own timeout.  When
every profile fails, the attempts are folded into a single
:class:`~kb_ingest.utils.errors.WebFetchError` classified by cause.

Parsing uses BeautifulSoup and prefers, in order:

1. JSON-LD ``articleBody`` when it is long enough,
2. a semantic container (``article``, ``main``, ``[role=main]``, common
   content ids/classes),
3. paragraphs scored by length and sentence count, penalized for
   boilerplate wording and link density,
4. the whole body's text.

Title, description, canonical URL and image come from Open Graph / meta
tags / ``<title>``.  The result is rendered as light markdown so the
chunker can split on ``##`` headings.
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from kb_ingest.interfaces.progress_reporter import IProgressReporter
from kb_ingest.models.document import Document
from kb_ingest.models.extraction import ExtractionResult, SourceKind
from kb_ingest.models.pipeline import PipelineStage
from kb_ingest.services.extraction.base import SourceExtractor
from kb_ingest.utils.errors import ExtractionError, MissingLocatorError, WebFetchError

logger = structlog.get_logger(logger_name=__name__)

HEADER_PROFILES: list[tuple[str, dict[str, str]]] = [
    (
        "chrome",
        {
            "User-Agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
            ),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Upgrade-Insecure-Requests": "1",
        },
    ),
    (
        "firefox",
        {
            "User-Agent": (
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:125.0) Gecko/20100101 Firefox/125.0"
            ),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        },
    ),
    (
        "minimal",
        {"User-Agent": "Mozilla/5.0 (compatible; kb-ingest/0.1)"},
    ),
]

# Cause precedence when attempts failed for different reasons.
_CAUSE_PRECEDENCE = ("blocked", "not_found", "server_error", "timeout", "tls", "unknown")

_CONTENT_SELECTORS = (
    "article",
    "main",
    "[role=main]",
    "#content",
    "#main-content",
    ".post-content",
    ".entry-content",
    ".article-body",
    ".article-content",
    ".content",
)

_STRIP_TAGS = ("script", "style", "noscript", "svg", "iframe", "template", "canvas", "form")
_CHROME_TAGS = ("nav", "header", "footer", "aside")
_BLOCK_TAGS = ("h1", "h2", "h3", "h4", "p", "li", "blockquote", "pre")

_BOILERPLATE = re.compile(
    r"cookie|subscribe|newsletter|advertis|sponsored|sign up|log ?in|privacy policy|"
    r"terms of (?:use|service)|all rights reserved|accept all|share this|follow us",
    re.IGNORECASE,
)
_CHROME_HINT = re.compile(r"nav|menu|footer|sidebar|breadcrumb|comment|cookie|banner|promo|ad-", re.I)
_SENTENCE_END = re.compile(r"[.!?](?:\s|$)")
_WHITESPACE = re.compile(r"[ \t ]+")

_MIN_PARAGRAPH_CHARS = 40
_MAX_LINK_DENSITY = 0.5


@dataclass
class _Attempt:
    profile: str
    status: int | None = None
    error: str | None = None
    cause: str = "unknown"

    def describe(self) -> str:
        if self.status is not None:
            return f"{self.profile}: HTTP {self.status}"
        return f"{self.profile}: {self.error}"


@dataclass
class ParsedPage:
    """Structured result of :func:`parse_html`."""

    title: str = ""
    description: str = ""
    canonical_url: str = ""
    image: str = ""
    blocks: list[str] = field(default_factory=list)
    method: str = "body_text"

    @property
    def body(self) -> str:
        return "\n\n".join(self.blocks)


def classify_status(status: int) -> str:
    if status in (401, 403, 429, 451):
        return "blocked"
    if status in (404, 410):
        return "not_found"
    if 500 <= status < 600:
        return "server_error"
    return "unknown"


def classify_exception(exc: BaseException) -> str:
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "timeout"
    text = str(exc).lower()
    if "ssl" in text or "certificate" in text or "tls" in text:
        return "tls"
    return "unknown"


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _meta(soup: BeautifulSoup, *names: str) -> str:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if isinstance(tag, Tag) and tag.get("content"):
            return _clean(str(tag["content"]))
    return ""


def _json_ld_objects(soup: BeautifulSoup) -> list[dict[str, Any]]:
    objects: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or "")
        except (TypeError, ValueError):
            continue
        stack = payload if isinstance(payload, list) else [payload]
        while stack:
            item = stack.pop(0)
            if not isinstance(item, dict):
                continue
            objects.append(item)
            graph = item.get("@graph")
            if isinstance(graph, list):
                stack.extend(graph)
    return objects


def _blocks_from(container: Tag) -> list[str]:
    """Render headings and text blocks inside *container* in document order."""
    blocks: list[str] = []
    for element in container.find_all(_BLOCK_TAGS):
        # Skip blocks nested inside another collected block (li > p, etc.).
        if element.find_parent(_BLOCK_TAGS) is not None:
            continue
        text = _clean(element.get_text(" ", strip=True))
        if not text:
            continue
        if element.name in ("h1", "h2", "h3", "h4"):
            blocks.append(f"## {text}")
        elif element.name == "li":
            blocks.append(f"- {text}")
        else:
            blocks.append(text)
    return blocks


def _text_length(blocks: list[str]) -> int:
    return sum(len(b) for b in blocks if not b.startswith("## "))


def score_paragraph(paragraph: Tag) -> float:
    """Score one ``<p>`` for the paragraph heuristic; ``<= 0`` means discard."""
    text = _clean(paragraph.get_text(" ", strip=True))
    if len(text) < _MIN_PARAGRAPH_CHARS:
        return 0.0
    link_chars = sum(len(a.get_text(strip=True)) for a in paragraph.find_all("a"))
    link_density = link_chars / len(text)
    if link_density > _MAX_LINK_DENSITY:
        return 0.0

    score = len(text) / 100 + len(_SENTENCE_END.findall(text))
    if _BOILERPLATE.search(text):
        score -= 5
    for parent in paragraph.parents:
        if not isinstance(parent, Tag) or parent.name == "body":
            break
        hint = " ".join([parent.get("id") or "", *(parent.get("class") or [])])
        if hint and _CHROME_HINT.search(hint):
            score -= 3
            break
    return score * (1 - link_density)


def parse_html(html: str, url: str, min_content_length: int = 200) -> ParsedPage:
    """Extract metadata and readable blocks from an HTML document."""
    soup = BeautifulSoup(html, "html.parser")
    page = ParsedPage()

    ld_objects = _json_ld_objects(soup)

    title_tag = soup.find("title")
    h1 = soup.find("h1")
    page.title = (
        _meta(soup, "og:title", "twitter:title")
        or (_clean(title_tag.get_text()) if title_tag else "")
        or (_clean(h1.get_text(" ", strip=True)) if h1 else "")
    )
    page.description = _meta(soup, "og:description", "description", "twitter:description")
    canonical = soup.find("link", rel="canonical")
    page.canonical_url = (
        (str(canonical.get("href")) if isinstance(canonical, Tag) and canonical.get("href") else "")
        or _meta(soup, "og:url")
        or url
    )
    page.image = _meta(soup, "og:image", "twitter:image")

    for obj in ld_objects:
        if not page.title and isinstance(obj.get("headline"), str):
            page.title = _clean(obj["headline"])
        if not page.description and isinstance(obj.get("description"), str):
            page.description = _clean(obj["description"])

    # 1. Structured data.
    for obj in ld_objects:
        body = obj.get("articleBody")
        if isinstance(body, str) and len(body.strip()) >= min_content_length:
            page.blocks = [p.strip() for p in re.split(r"\n\s*\n", body) if p.strip()]
            page.method = "json_ld"
            return page

    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()

    # 2. Semantic containers.
    for selector in _CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is None:
            continue
        for tag in container.find_all(_CHROME_TAGS):
            tag.decompose()
        blocks = _blocks_from(container)
        if _text_length(blocks) >= min_content_length:
            page.blocks = blocks
            page.method = f"container:{selector}"
            return page

    # 3. Scored paragraphs.
    body_tag = soup.body or soup
    kept = [p for p in body_tag.find_all("p") if score_paragraph(p) > 1.0]
    blocks = [_clean(p.get_text(" ", strip=True)) for p in kept]
    if _text_length(blocks) >= min_content_length:
        page.blocks = blocks
        page.method = "scored_paragraphs"
        return page

    # 4. Brute-force text.
    for tag in body_tag.find_all(_CHROME_TAGS):
        tag.decompose()
    lines = [_clean(line) for line in body_tag.get_text("\n").splitlines()]
    page.blocks = [line for line in lines if line]
    page.method = "body_text"
    return page


def render_markdown(page: ParsedPage) -> str:
    """Render *page* as ``# title``, description, source line, then the body."""
    parts: list[str] = []
    if page.title:
        parts.append(f"# {page.title}")
    if page.description:
        parts.append(page.description)
    if page.canonical_url:
        parts.append(f"Source: {page.canonical_url}")
    body = page.body
    if body:
        parts.append(body)
    return "\n\n".join(parts)


class WebExtractor(SourceExtractor):
    """Fetches and parses the web page behind a document's source URL.

    Parameters
    ----------
    http_client:
        Optional shared ``httpx.AsyncClient``; one is created per call
        otherwise.
    timeout_seconds:
        Per-attempt timeout.
    min_content_length:
        Characters a parsing strategy must yield to be accepted.
    """

    kind = SourceKind.WEB
    needs_blob = False
    quality_user_message = "We couldn't find enough readable text on this page."
    quality_actions = [
        "Check the link points at an article rather than a home or login page.",
        "Copy the page text into a document and upload it instead.",
    ]

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
        min_content_length: int = 200,
    ) -> None:
        self._http = http_client
        self._timeout = timeout_seconds
        self._min_content_length = min_content_length

    async def extract(
        self,
        document: Document,
        data: bytes | None,
        progress: IProgressReporter,
    ) -> ExtractionResult:
        url = document.source_url
        if not url:
            raise MissingLocatorError(message=f"Document {document.id} has no source URL")
        if not re.match(r"^https?://", url, re.IGNORECASE):
            url = f"https://{url}"

        html, final_url, profile = await self.fetch(url)
        await progress.report(PipelineStage.EXTRACTION, 1, 2)

        page = parse_html(html, final_url, self._min_content_length)
        text = render_markdown(page)
        await progress.report(PipelineStage.EXTRACTION, 2, 2)

        logger.info(
            "web_page_extracted",
            document_id=document.id,
            url=final_url,
            method=page.method,
            profile=profile,
            chars=len(text),
        )
        return ExtractionResult(
            text=text,
            source_kind=SourceKind.WEB,
            metadata={
                "type": "webpage",
                "title": page.title,
                "description": page.description,
                "canonical_url": page.canonical_url,
                "image": page.image,
                "source_url": url,
                "extraction_method": page.method,
                "fetch_profile": profile,
                "content_length": len(page.body),
            },
        )

    async def fetch(self, url: str) -> tuple[str, str, str]:
        """Return ``(html, final_url, profile_name)`` for the first profile that works.

        Raises
        ------
        WebFetchError
            Once every profile has failed.
        """
        if self._http is not None:
            return await self._fetch_with(self._http, url)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._fetch_with(client, url)

    async def _fetch_with(self, client: httpx.AsyncClient, url: str) -> tuple[str, str, str]:
        attempts: list[_Attempt] = []
        for profile, headers in HEADER_PROFILES:
            attempt = _Attempt(profile=profile)
            try:
                response = await asyncio.wait_for(
                    client.get(url, headers=headers, follow_redirects=True),
                    timeout=self._timeout,
                )
            except (asyncio.TimeoutError, httpx.HTTPError) as exc:
                attempt.error = f"{type(exc).__name__}: {exc}"
                attempt.cause = classify_exception(exc)
                attempts.append(attempt)
                logger.info("web_fetch_attempt_failed", url=url, profile=profile, cause=attempt.cause)
                continue

            if response.status_code >= 400:
                attempt.status = response.status_code
                attempt.cause = classify_status(response.status_code)
                attempts.append(attempt)
                logger.info(
                    "web_fetch_attempt_failed",
                    url=url,
                    profile=profile,
                    status=response.status_code,
                )
                continue

            content_type = str(response.headers.get("content-type", "")).lower()
            if content_type and "html" not in content_type and "text/plain" not in content_type:
                raise ExtractionError(
                    message=f"URL returned unsupported content type {content_type!r}",
                    user_message="This link doesn't point to a web page.",
                    suggested_actions=["Download the file and upload it directly instead."],
                )
            return response.text, str(response.url or url), profile

        cause = next(
            (c for c in _CAUSE_PRECEDENCE if any(a.cause == c for a in attempts)),
            "unknown",
        )
        summary = "; ".join(a.describe() for a in attempts)
        logger.warning("web_fetch_failed", url=url, cause=cause, attempts=summary)
        raise WebFetchError(
            message=f"All {len(attempts)} fetch attempts failed for {url} ({summary})",
            provider_name="httpx",
            cause=cause,
            attempts=[a.describe() for a in attempts],
        )
