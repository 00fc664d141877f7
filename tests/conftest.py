"""Shared fixtures: an in-memory stand-in for the site and browser page, document builders, temp databases."""

import asyncio
import io
import textwrap
import zipfile
from typing import Dict, Optional, Tuple

import pytest
from docx import Document
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rfpmart_analyzer.config import (
    AcquisitionConfig,
    BrowserConfig,
    Config,
    LoginSelectors,
    RetentionConfig,
    SiteConfig,
)
from rfpmart_analyzer.database import connection
from rfpmart_analyzer.database.connection import close_database_connections, get_db, init_database

BASE_URL = "https://www.rfpmart.com"
LOGIN_URL = f"{BASE_URL}/userlogin.html"
DASHBOARD_URL = f"{BASE_URL}/myaccount.html"
CATEGORY_URL = f"{BASE_URL}/web-design-and-development-rfp-government-contract.html"

USERNAME = "buyer@example.com"
PASSWORD = "correct-horse"

# Scores 95 of 112 (85%, HIGH)
HIGHER_ED_TEXT = (
    "Request for Proposal: Website Redesign. Lone Star State University invites proposals to redesign "
    "its public website on Drupal. The selected firm will plan content, design templates and train staff. "
    "Total compensation shall not to exceed $120,000 for the full engagement."
)

# Red flag plus a low budget: -10 of 112 (SKIP)
LOGO_TEXT = (
    "The town parks department seeks a designer for logo design only, $5,000 maximum. Deliver three "
    "concepts and final artwork files in vector format within sixty days of award."
)


# --- Document builders ---

def make_pdf(text: str) -> bytes:
    """A one-page PDF whose content stream draws ``text`` in Helvetica."""
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    ops = ["BT", "/F1 10 Tf", "14 TL", "50 750 Td"]
    for line in textwrap.wrap(escaped, 80):
        ops.append(f"({line}) Tj T*")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_offset)
    return bytes(out)


def make_docx(paragraphs, table_rows=None) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    if table_rows:
        table = document.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for row_index, row in enumerate(table_rows):
            for col_index, value in enumerate(row):
                table.cell(row_index, col_index).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def make_zip(entries: Dict[str, bytes]) -> bytes:
    """Entries ending in '/' become directory entries."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            if name.endswith("/"):
                archive.writestr(zipfile.ZipInfo(name), b"")
            else:
                archive.writestr(name, data)
    return buffer.getvalue()


# --- Fake site and Playwright page ---

class FakeElement:
    def __init__(self, page: "FakePage" = None):
        self.page = page
        self.clicked = False

    async def is_visible(self) -> bool:
        return True

    async def click(self):
        self.clicked = True
        if self.page is not None:
            self.page.logged_in = False


class FakeResponse:
    def __init__(self, status: int = 200, headers: Optional[Dict[str, str]] = None, body: bytes = b""):
        self.status = status
        self.headers = headers or {}
        self._body = body

    @property
    def ok(self) -> bool:
        return self.status < 400

    async def body(self) -> bytes:
        return self._body


class FakeSite:
    """Pages and files served to the fake page; every page except login needs a session."""

    def __init__(self):
        self.pages: Dict[str, str] = {}
        self.files: Dict[str, Tuple[Dict[str, str], bytes]] = {}
        self.failing_urls = set()
        self.username = USERNAME
        self.password = PASSWORD
        self.login_delay = 0.01
        self.hang_login_signal = False

    def add_page(self, url: str, html: str):
        self.pages[url] = html

    def add_file(self, url: str, data: bytes, content_type: str):
        headers = {"Content-Type": content_type, "Content-Length": str(len(data))}
        self.files[url] = (headers, data)


class FakeAPIRequest:
    def __init__(self, site: FakeSite):
        self.site = site
        self.gets = []

    async def head(self, url, timeout=None):
        if url not in self.site.files:
            return FakeResponse(404)
        headers, _ = self.site.files[url]
        return FakeResponse(200, headers)

    async def get(self, url, timeout=None):
        self.gets.append(url)
        if url not in self.site.files:
            return FakeResponse(404)
        headers, data = self.site.files[url]
        return FakeResponse(200, headers, data)


class FakeContext:
    def __init__(self, page: "FakePage"):
        self.page = page
        self.request = FakeAPIRequest(page.site)

    async def clear_cookies(self):
        self.page.logged_in = False


class FakePage:
    """The subset of the Playwright page API the session, listing and acquisition code use."""

    def __init__(self, site: FakeSite):
        self.site = site
        self.url = "about:blank"
        self.logged_in = False
        self.error_visible = False
        self.form: Dict[str, str] = {}
        self.submissions = 0
        self.goto_calls = []
        self._html = "<html></html>"
        self.context = FakeContext(self)

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        await asyncio.sleep(0)
        if url in self.site.failing_urls:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded navigating to {url}")
        if url != LOGIN_URL and not self.logged_in:
            self.url = LOGIN_URL
            self._html = "<html><head><title>Login</title></head><body><form></form></body></html>"
            return FakeResponse(200)
        self.url = url
        self.error_visible = False
        self._html = self.site.pages.get(url, "<html><body>Not found</body></html>")
        return FakeResponse(200)

    async def content(self) -> str:
        return self._html

    async def title(self) -> str:
        return "Login" if self.url == LOGIN_URL else "RFP Mart"

    async def fill(self, selector, value):
        self.form[selector] = value

    async def click(self, selector):
        self.submissions += 1
        login = LoginSelectors()
        if self.form.get(login.username) == self.site.username and self.form.get(login.password) == self.site.password:
            self.logged_in = True
            self.url = DASHBOARD_URL
            self._html = '<html><body><a href="/logout.html">Logout</a></body></html>'
        else:
            self.error_visible = True

    async def wait_for_selector(self, selector, timeout=None):
        await asyncio.sleep(self.site.login_delay)
        if self.site.hang_login_signal:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return FakeElement()

    async def wait_for_load_state(self, state=None, timeout=None):
        return None

    async def query_selector(self, selector):
        if selector == LoginSelectors().error:
            return FakeElement() if self.error_visible else None
        if selector == 'a[href*="logout"]' and self.logged_in and self.url != LOGIN_URL:
            return FakeElement(self)
        return None


# --- Fixtures ---

@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def page(site) -> FakePage:
    return FakePage(site)


@pytest.fixture
def config(tmp_path) -> Config:
    """Default configuration with credentials, no delays and temp directories."""
    return Config(
        site=SiteConfig(username=USERNAME, password=PASSWORD),
        browser=BrowserConfig(request_delay=0, retry_delay=0, navigation_attempts=2, login_attempts=2),
        acquisition=AcquisitionConfig(download_dir=str(tmp_path / "rfps")),
        retention=RetentionConfig(data_dir=str(tmp_path / "rfps")),
    )


@pytest.fixture
def database(tmp_path):
    """A fresh SQLite database; yields the ``get_db`` scope bound to it."""
    init_database(f"sqlite:///{tmp_path / 'test.sqlite'}")
    yield get_db
    close_database_connections()
    assert connection._engine is None
