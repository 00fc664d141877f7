"""
Browser management for the site session.

Launches one Playwright Chromium browser with a single context and page.
Everything that touches the site shares that page, so navigations must be
serialized by the caller (see ``SessionHandle``).
"""

import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from ..config import BrowserConfig
from ..exceptions import NavigationError

logger = logging.getLogger(__name__)


class BrowserManager:
    """Owns the Playwright lifecycle for a run."""

    def __init__(self, config: BrowserConfig):
        self.config = config
        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def initialize(self) -> Page:
        """Start the browser and return the shared page."""
        try:
            self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=[
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                    "--disable-gpu",
                ]
            )
            self.context = await self.browser.new_context(
                user_agent=self.config.user_agent,
                accept_downloads=True,
            )
            self.context.set_default_navigation_timeout(self.config.navigation_timeout)
            self.context.set_default_timeout(self.config.page_load_timeout)
            self.page = await self.context.new_page()
            logger.info(f"Browser initialized (headless={self.config.headless})")
            return self.page

        except Exception as e:
            await self.cleanup()
            raise NavigationError(f"Failed to initialize browser: {e}")

    async def cleanup(self):
        """Close page, context, browser and the Playwright driver."""
        for name, resource in (("page", self.page), ("context", self.context), ("browser", self.browser)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping Playwright: {e}")

        self.page = None
        self.context = None
        self.browser = None
        self._playwright = None

    async def __aenter__(self) -> "BrowserManager":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

    def __repr__(self) -> str:
        return f"<BrowserManager(headless={self.config.headless}, open={self.page is not None})>"
