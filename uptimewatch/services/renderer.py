"""Headless page renderer used as the content-validation fallback."""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

CHROMIUM_CANDIDATES = [
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
]


@dataclass
class RenderedPage:
    """Title and visible text of a page after JavaScript ran."""
    title: str
    text_content: str


def find_chromium_executable(configured: Optional[str] = None) -> Optional[str]:
    """Locate a system Chromium; None lets Playwright use its bundled browser."""
    for path in (configured, os.getenv("CHROMIUM_PATH")):
        if path and Path(path).exists():
            return path
    for path in CHROMIUM_CANDIDATES:
        if Path(path).exists():
            return path
    return None


class PlaywrightRenderer:
    """Renders a URL in headless Chromium and returns its title and text."""

    def __init__(self, timeout: float = 30, chromium_path: Optional[str] = None):
        self.timeout = timeout
        self.chromium_path = chromium_path

    async def render(self, url: str) -> RenderedPage:
        launch_kwargs = {"headless": True, "args": LAUNCH_ARGS}
        executable = find_chromium_executable(self.chromium_path)
        if executable:
            launch_kwargs["executable_path"] = executable

        async with async_playwright() as p:
            browser = await p.chromium.launch(**launch_kwargs)
            try:
                page = await browser.new_page(viewport={"width": 1280, "height": 720})
                await page.goto(url, wait_until="networkidle", timeout=self.timeout * 1000)
                title = await page.title() or ""
                text = await page.evaluate(
                    "() => (document.body && document.body.textContent) || ''"
                )
                return RenderedPage(title=title, text_content=text or "")
            finally:
                await browser.close()
