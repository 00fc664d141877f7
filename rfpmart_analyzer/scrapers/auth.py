"""
Authenticated session management for RFP Mart.

The session manager is the only component that reads or changes login state.
Other components call ``ensure_authenticated()`` or ``open(url)`` and work
through the returned ``SessionHandle``.

State machine::

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED -> EXPIRED | INVALIDATED
                                                            -> AUTHENTICATING

Concurrent callers that find the session unusable share one in-flight login.
"""

import asyncio
import time
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import BrowserConfig, SelectorConfig, SiteConfig
from ..exceptions import AuthError, NavigationError, SessionExpiredError
from ..models import AuthSession
from ..utils.logging import get_logger, log_navigation
from ..utils.retry import retry_async
from .rate_limiter import RateLimiter

logger = get_logger(__name__)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    INVALIDATED = "invalidated"


class LoginOutcome(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    INDETERMINATE = "indeterminate"


class FetchedResource:
    """Body and headers of a resource fetched through the session cookies."""

    def __init__(self, url: str, status: int, headers: Dict[str, str], data: bytes):
        self.url = url
        self.status = status
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.data = data

    @property
    def content_type(self) -> Optional[str]:
        value = self.headers.get("content-type")
        return value.split(";")[0].strip().lower() if value else None


class SessionHandle:
    """
    Opaque handle to the authenticated page.

    Navigations are serialized with a lock because every selector query runs
    against whichever page the last navigation loaded.
    """

    def __init__(self, manager: "SessionManager", page: Page, rate_limiter: RateLimiter, config: BrowserConfig):
        self._manager = manager
        self._page = page
        self._rate_limiter = rate_limiter
        self._config = config
        self._nav_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return self._page.url

    async def title(self) -> str:
        return await self._page.title()

    async def content(self) -> str:
        return await self._page.content()

    async def query_selector(self, selector: str):
        return await self._page.query_selector(selector)

    async def goto(self, url: str) -> None:
        """
        Navigate with bounded retry, then check for a login redirect.

        Raises:
            SessionExpiredError: The site sent us to the login page
            NavigationError: Retries exhausted; the session is invalidated
        """
        try:
            await self.navigate(url)
        except NavigationError:
            self._manager.invalidate(f"navigation to {url} failed")
            raise

        if self._manager.is_login_page(self._page.url) and not self._manager.is_login_page(url):
            self._manager.invalidate("redirected to login page")
            raise SessionExpiredError(f"Redirected to login while opening {url}", url)

    async def navigate(self, url: str) -> None:
        """Rate-limited navigation with retry; no login redirect check."""
        async with self._nav_lock:
            await self._rate_limiter.respect_rate_limit(url)
            attempt_counter = {"n": 0}

            async def _attempt():
                attempt_counter["n"] += 1
                await self._goto_once(url, attempt_counter["n"])

            await retry_async(
                _attempt,
                name=f"navigate {url}",
                attempts=self._config.navigation_attempts,
                base_delay=self._config.retry_delay,
                retry_on=(NavigationError,),
            )

    async def _goto_once(self, url: str, attempt: int) -> None:
        started = time.monotonic()
        try:
            response = await self._page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self._config.navigation_timeout,
            )
        except PlaywrightTimeoutError as e:
            log_navigation(url, time.monotonic() - started, False, attempt, "timeout")
            raise NavigationError(f"Timed out navigating to {url}", url) from e
        except PlaywrightError as e:
            log_navigation(url, time.monotonic() - started, False, attempt, str(e))
            raise NavigationError(f"Navigation to {url} failed: {e}", url) from e

        status = getattr(response, "status", None) if response is not None else None
        if status is not None and status >= 500:
            log_navigation(url, time.monotonic() - started, False, attempt, f"HTTP {status}")
            raise NavigationError(f"Server error {status} for {url}", url, status)

        log_navigation(url, time.monotonic() - started, True, attempt)

    async def probe(self, url: str) -> Optional[Dict[str, str]]:
        """HEAD the URL with the session cookies. Returns lowercased headers, or None."""
        await self._rate_limiter.respect_rate_limit(url)
        try:
            response = await self._page.context.request.head(url, timeout=self._config.navigation_timeout)
        except PlaywrightError as e:
            logger.debug("HEAD probe failed", url=url, error=str(e))
            return None
        if not response.ok:
            return None
        return {k.lower(): v for k, v in response.headers.items()}

    async def fetch(self, url: str) -> FetchedResource:
        """GET the URL into memory with the session cookies."""
        async with self._nav_lock:
            await self._rate_limiter.respect_rate_limit(url)
            try:
                response = await self._page.context.request.get(url, timeout=self._config.download_timeout)
                if not response.ok:
                    raise NavigationError(f"HTTP {response.status} fetching {url}", url, response.status)
                data = await response.body()
            except PlaywrightTimeoutError as e:
                raise NavigationError(f"Timed out fetching {url}", url) from e
            except PlaywrightError as e:
                raise NavigationError(f"Fetch of {url} failed: {e}", url) from e
        return FetchedResource(url, response.status, dict(response.headers), data)

    async def download(self, url: str, directory: Path) -> Path:
        """Trigger a browser download of ``url`` and save it under ``directory``."""
        directory.mkdir(parents=True, exist_ok=True)
        async with self._nav_lock:
            await self._rate_limiter.respect_rate_limit(url)
            try:
                async with self._page.expect_download(timeout=self._config.download_timeout) as download_info:
                    await self._page.evaluate(
                        """url => {
                            const link = document.createElement('a');
                            link.href = url;
                            link.download = '';
                            document.body.appendChild(link);
                            link.click();
                            link.remove();
                        }""",
                        url,
                    )
                download = await download_info.value
                target = directory / download.suggested_filename
                await download.save_as(str(target))
            except PlaywrightTimeoutError as e:
                raise NavigationError(f"Timed out downloading {url}", url) from e
            except PlaywrightError as e:
                raise NavigationError(f"Download of {url} failed: {e}", url) from e
        return target


class SessionManager:
    """Owns login state for the shared browser page."""

    def __init__(
        self,
        page: Page,
        site: SiteConfig,
        browser: BrowserConfig,
        selectors: SelectorConfig,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self._page = page
        self._site = site
        self._browser = browser
        self._selectors = selectors
        self._budget = timedelta(hours=browser.session_budget_hours)
        self._auth = AuthSession(session_budget=self._budget)
        self._state = SessionState.UNAUTHENTICATED
        self._inflight: Optional[asyncio.Task] = None
        self._handle = SessionHandle(self, page, rate_limiter or RateLimiter(browser.request_delay), browser)
        self.stats: Dict[str, Any] = {
            "logins": 0,
            "login_attempts": 0,
            "verifications": 0,
            "invalidations": 0,
        }

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED and not self._auth.is_expired()

    def _transition(self, new_state: SessionState, reason: str = "") -> None:
        if new_state is not self._state:
            logger.info("Session state change", old=self._state.value, new=new_state.value, reason=reason)
        self._state = new_state

    def is_login_page(self, url: str) -> bool:
        url = (url or "").lower()
        if url.startswith(self._site.login_url.lower()):
            return True
        return any(marker in url for marker in self._selectors.auth.negative_url_markers)

    async def login(self) -> AuthSession:
        """
        Log in, retrying transient failures a bounded number of times.

        Raises:
            AuthError: Credentials missing or rejected, or every attempt failed
        """
        if not self._site.has_credentials:
            raise AuthError(
                "RFP Mart credentials are not configured (RFPMART_USERNAME / RFPMART_PASSWORD)",
                reason="missing_credentials",
            )

        self._transition(SessionState.AUTHENTICATING, "login requested")
        attempts = self._browser.login_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            self.stats["login_attempts"] += 1
            try:
                outcome = await self._attempt_login()
            except NavigationError as e:
                last_error = e
                logger.warning("Login navigation failed", attempt=attempt, attempts=attempts, error=str(e))
            else:
                if outcome is LoginOutcome.REJECTED:
                    self._transition(SessionState.UNAUTHENTICATED, "credentials rejected")
                    raise AuthError(
                        "Login rejected by the site; check credentials",
                        reason="credentials_rejected",
                        url=self._site.login_url,
                    )

                if outcome is LoginOutcome.SUCCESS:
                    return self._mark_authenticated()

                logger.warning("Login outcome indeterminate; re-verifying", attempt=attempt)
                if await self.verify_authentication():
                    return self._mark_authenticated()
                last_error = AuthError("Login outcome indeterminate", reason="indeterminate", fatal=False)

            if attempt < attempts:
                await asyncio.sleep(self._browser.retry_delay * (2 ** (attempt - 1)))

        self._transition(SessionState.UNAUTHENTICATED, "login failed")
        raise AuthError(
            f"Login failed after {attempts} attempts: {last_error}",
            reason=getattr(last_error, "reason", "navigation_failed"),
            url=self._site.login_url,
        )

    async def _attempt_login(self) -> LoginOutcome:
        selectors = self._selectors.login
        page = self._page

        await self._handle.navigate(self._site.login_url)

        try:
            await page.fill(selectors.username, self._site.username)
            await page.fill(selectors.password, self._site.password)
            await page.click(selectors.submit)
        except PlaywrightError as e:
            raise NavigationError(f"Login form interaction failed: {e}", self._site.login_url) from e

        signal = ", ".join([selectors.error] + list(self._selectors.auth.positive))
        try:
            await page.wait_for_selector(signal, timeout=self._browser.login_timeout)
        except PlaywrightTimeoutError:
            return LoginOutcome.INDETERMINATE
        except PlaywrightError as e:
            logger.debug("Waiting for login signal failed", error=str(e))
            return LoginOutcome.INDETERMINATE

        try:
            error_element = await page.query_selector(selectors.error)
            if error_element is not None and await error_element.is_visible():
                return LoginOutcome.REJECTED
        except PlaywrightError as e:
            logger.debug("Error marker check failed", error=str(e))

        if self.is_login_page(page.url):
            return LoginOutcome.INDETERMINATE
        return LoginOutcome.SUCCESS

    def _mark_authenticated(self) -> AuthSession:
        self._auth = AuthSession(authenticated=True, login_time=datetime.now(), session_budget=self._budget)
        self.stats["logins"] += 1
        self._transition(SessionState.AUTHENTICATED, "login succeeded")
        return self._auth

    async def verify_authentication(self) -> bool:
        """
        Check the current page for signs of a logged-in session.

        Positive markers are checked first because the site's markers are
        inconsistent across pages; negative markers only decide when no
        positive marker is present. With no signal either way the session is
        assumed to be valid.
        """
        self.stats["verifications"] += 1
        page = self._page
        auth_selectors = self._selectors.auth

        for selector in auth_selectors.positive:
            try:
                if await page.query_selector(selector) is not None:
                    return True
            except PlaywrightError as e:
                logger.debug("Auth indicator query failed", selector=selector, error=str(e))

        if self.is_login_page(page.url):
            return False

        try:
            title = (await page.title()).lower()
        except PlaywrightError:
            title = ""
        if any(marker in title for marker in auth_selectors.negative_title_markers):
            return False

        logger.debug("No clear authentication signal; assuming authenticated", url=page.url)
        return True

    async def ensure_authenticated(self) -> SessionHandle:
        """
        Return a handle to a logged-in page, logging in again when needed.

        This is the only way other components should obtain the handle.
        """
        if self._state is SessionState.AUTHENTICATED and self._auth.is_expired():
            self._auth.authenticated = False
            self._transition(SessionState.EXPIRED, "session budget exceeded")

        if self._state is SessionState.AUTHENTICATED and self._inflight is None:
            checked = self._auth
            if await self.verify_authentication():
                return self._handle
            # Another caller may have logged in again while we were checking
            if self._auth is checked and self._state is SessionState.AUTHENTICATED and self._inflight is None:
                self.invalidate("verification failed")
            elif self._state is SessionState.AUTHENTICATED and self._inflight is None:
                return self._handle

        task = self._inflight
        if task is None:
            task = self._inflight = asyncio.ensure_future(self._single_flight_login())
        await asyncio.shield(task)
        return self._handle

    async def _single_flight_login(self) -> AuthSession:
        try:
            return await self.login()
        finally:
            self._inflight = None

    async def open(self, url: str) -> SessionHandle:
        """Navigate to ``url`` on an authenticated page, re-authenticating once on a login redirect."""
        handle = await self.ensure_authenticated()
        try:
            await handle.goto(url)
        except SessionExpiredError:
            logger.warning("Session expired mid-run; re-authenticating", url=url)
            handle = await self.ensure_authenticated()
            await handle.goto(url)
        return handle

    def invalidate(self, reason: str) -> None:
        """Mark the session unusable; the next ensure_authenticated() logs in again."""
        if self._state is SessionState.UNAUTHENTICATED:
            return
        self.stats["invalidations"] += 1
        self._auth.authenticated = False
        self._transition(SessionState.INVALIDATED, reason)

    async def logout(self) -> bool:
        """Log out if logged in. Returns True when a logout was performed."""
        if self._state is not SessionState.AUTHENTICATED:
            return False

        page = self._page
        for selector in self._selectors.auth.logout:
            try:
                element = await page.query_selector(selector)
            except PlaywrightError:
                continue
            if element is None:
                continue
            try:
                await element.click()
                await page.wait_for_load_state("domcontentloaded", timeout=self._browser.navigation_timeout)
            except PlaywrightError as e:
                logger.warning("Logout click failed", selector=selector, error=str(e))
            break

        try:
            await page.context.clear_cookies()
        except PlaywrightError as e:
            logger.warning("Clearing cookies failed", error=str(e))

        self._auth = AuthSession(session_budget=self._budget)
        self._transition(SessionState.UNAUTHENTICATED, "logged out")
        return True

    def __repr__(self) -> str:
        return f"<SessionManager(state={self._state.value}, logins={self.stats['logins']})>"
