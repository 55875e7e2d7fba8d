"""Content validator - checks expected title/content in a monitored page."""
import asyncio
import html
import logging
import re
from typing import Optional, Protocol

from ..models import Monitor
from .renderer import RenderedPage

logger = logging.getLogger(__name__)

TITLE_PATTERN = re.compile(r"<title[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)
WHITESPACE_PATTERN = re.compile(r"\s+")


class PageRenderer(Protocol):
    async def render(self, url: str) -> RenderedPage:
        ...


def extract_title(body: str) -> str:
    """Extract the <title> text from raw HTML, entities decoded, whitespace collapsed."""
    match = TITLE_PATTERN.search(body or "")
    if not match:
        return ""
    return WHITESPACE_PATTERN.sub(" ", html.unescape(match.group(1))).strip()


def matches_expectations(
    title: str,
    text: str,
    expected_title: Optional[str],
    expected_content: Optional[str],
) -> bool:
    """Apply the title and content rules to a page.

    Title passes if nothing is expected, the title equals the expectation, or
    the expectation appears anywhere in ``text`` (case-insensitive). Content
    passes if nothing is expected or it appears in ``text`` (case-insensitive).
    """
    haystack = (text or "").lower()

    title_ok = (
        not expected_title
        or title == expected_title.strip()
        or expected_title.lower() in haystack
    )
    content_ok = not expected_content or expected_content.lower() in haystack
    return title_ok and content_ok


class ContentValidator:
    """Two-tier validation: raw HTML first, headless rendering as fallback.

    JavaScript-rendered single-page apps often ship an empty shell, so when the
    static tier fails the page is rendered and the same rules are applied to the
    rendered title and text. Rendering is skipped entirely when the static tier
    passes.
    """

    def __init__(self, renderer: Optional[PageRenderer] = None, render_timeout: float = 30):
        self.renderer = renderer
        self.render_timeout = render_timeout

    async def validate(self, monitor: Monitor, body: str) -> bool:
        if self.validate_static(monitor, body):
            return True
        return await self.validate_rendered(monitor)

    def validate_static(self, monitor: Monitor, body: str) -> bool:
        return matches_expectations(
            extract_title(body),
            body,
            monitor.expected_title,
            monitor.expected_content,
        )

    async def validate_rendered(self, monitor: Monitor) -> bool:
        if self.renderer is None:
            return False

        try:
            page = await asyncio.wait_for(
                self.renderer.render(monitor.url),
                # navigation timeout plus browser startup
                timeout=self.render_timeout + 15,
            )
        except Exception as e:
            logger.warning(f"Rendering failed for {monitor.name}: {type(e).__name__}: {e}")
            return False

        title = WHITESPACE_PATTERN.sub(" ", page.title or "").strip()
        valid = matches_expectations(
            title,
            page.text_content,
            monitor.expected_title,
            monitor.expected_content,
        )
        logger.debug(f"Rendered validation for {monitor.name}: {valid}")
        return valid
