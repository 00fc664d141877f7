"""
Listing extraction for RFP Mart category pages.

The category markup varies between list-based and table-based layouts, so
records are located with a prioritized chain of strategies. Each strategy is
a small function returning candidate record elements; the first strategy
that yields records wins. Every record is parsed independently and a record
with missing optional fields is still emitted.
"""

import hashlib
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from ..config import ListingSelectors
from ..exceptions import ListingError, NavigationError
from ..models import OpportunityListing
from ..utils.dates import parse_listing_date, split_labeled_dates
from .auth import SessionManager

logger = logging.getLogger(__name__)

ID_TITLE_LENGTH = 40

_NAV_HREF = re.compile(r"(login|logout|signin|register|account|profile|javascript:|mailto:|^#)", re.I)
_RECORD_CLASS = re.compile(r"(rfp|opportunit|contract|bid|solicitation|listing)", re.I)


def ascii_fold(text: str) -> str:
    """Strip accents and drop anything that is not ASCII."""
    normalized = unicodedata.normalize("NFKD", text or "")
    return normalized.encode("ascii", "ignore").decode("ascii")


def derive_listing_id(title: str, posted_date: Optional[date]) -> str:
    """
    Derive a stable id from the title and posted date.

    The same (title, posted date) pair always yields the same id, which is
    what makes re-runs deduplicate.
    """
    folded = re.sub(r"[^A-Za-z0-9]", "", ascii_fold(title)).upper()[:ID_TITLE_LENGTH]
    date_part = posted_date.isoformat() if posted_date else "NODATE"
    digest = hashlib.sha256(f"{folded}|{date_part}".encode("utf-8")).hexdigest()
    return f"RFP-{digest[:12].upper()}"


def _clean_site_id(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    cleaned = re.sub(r"^(rfp|id|contract|opportunity)\s*(id|#|no\.?)?\s*[:#-]?\s*", "", raw.strip(), flags=re.I)
    cleaned = re.sub(r"[^A-Za-z0-9-]", "", cleaned)
    return f"RFP-{cleaned.upper()}" if cleaned else None


@dataclass
class ListingPage:
    """Records parsed from one listing page plus the next-page link, if any."""
    url: str
    records: List[OpportunityListing] = field(default_factory=list)
    next_url: Optional[str] = None
    strategy: Optional[str] = None
    skipped: int = 0


# Record-locating strategies, tried in order.

def _items_by_selector(soup: BeautifulSoup, selectors: ListingSelectors) -> List[Tag]:
    containers = soup.select(selectors.container)
    scopes = containers or [soup]
    items: List[Tag] = []
    for scope in scopes:
        items.extend(scope.select(selectors.item))
    return items


def _items_from_table_rows(soup: BeautifulSoup, selectors: ListingSelectors) -> List[Tag]:
    rows = []
    for table in soup.find_all("table"):
        for row in table.find_all("tr"):
            if row.find("th") and not row.find("td"):
                continue  # header
            if len(row.find_all("td")) >= 2 and row.find("a", href=True):
                rows.append(row)
    return rows


def _items_from_list_entries(soup: BeautifulSoup, selectors: ListingSelectors) -> List[Tag]:
    entries = []
    for element in soup.find_all(["li", "div", "article"], class_=_RECORD_CLASS):
        link = element.find("a", href=True)
        if link is None or _NAV_HREF.search(link["href"]):
            continue
        # Keep the innermost matching element only
        if element.find(["li", "div", "article"], class_=_RECORD_CLASS):
            continue
        entries.append(element)
    return entries


RECORD_STRATEGIES: Sequence[tuple] = (
    ("item_selector", _items_by_selector),
    ("table_rows", _items_from_table_rows),
    ("list_entries", _items_from_list_entries),
)


def _select_text(element: Tag, selector: str) -> Optional[str]:
    try:
        found = element.select_one(selector)
    except (ValueError, NotImplementedError) as e:
        logger.debug(f"Selector '{selector}' failed: {e}")
        return None
    if found is None:
        return None
    text = found.get_text(" ", strip=True)
    return text or None


def _title_and_link(element: Tag, selectors: ListingSelectors) -> tuple:
    title_element = element.select_one(selectors.title)
    link = None
    if title_element is not None:
        link = title_element if title_element.name == "a" and title_element.get("href") else title_element.find("a", href=True)
        if link is None:
            link = title_element.find_parent("a", href=True)

    if link is None:
        for candidate in element.find_all("a", href=True):
            if not _NAV_HREF.search(candidate["href"]) and candidate.get_text(strip=True):
                link = candidate
                break

    title = None
    if title_element is not None:
        title = title_element.get_text(" ", strip=True)
    if not title and link is not None:
        title = link.get_text(" ", strip=True)

    return title, (link.get("href") if link is not None else None)


def _record_dates(element: Tag, selectors: ListingSelectors) -> tuple:
    posted_text = _select_text(element, selectors.posted_date)
    due_text = _select_text(element, selectors.due_date)

    segments = split_labeled_dates(" ".join(filter(None, [posted_text, due_text])))
    if not segments and not (posted_text or due_text):
        segments = split_labeled_dates(element.get_text(" ", strip=True))

    posted = parse_listing_date(segments.get("posted")) if "posted" in segments else parse_listing_date(posted_text)
    due = parse_listing_date(segments.get("due")) if "due" in segments else parse_listing_date(due_text)

    if posted is None and due is None and element.name == "tr":
        parsed = [parse_listing_date(cell.get_text(" ", strip=True)) for cell in element.find_all("td")]
        parsed = [value for value in parsed if value is not None]
        if parsed:
            posted = parsed[0]
            due = parsed[1] if len(parsed) > 1 else None

    return posted, due


def parse_record(element: Tag, selectors: ListingSelectors, base_url: str) -> Optional[OpportunityListing]:
    """
    Parse one record element.

    Returns None only when there is no title or no detail link, since neither
    the id nor acquisition can work without them.
    """
    title, href = _title_and_link(element, selectors)
    if not title or not href:
        return None

    title = " ".join(title.split())
    posted, due = _record_dates(element, selectors)

    download_ref = None
    try:
        download = element.select_one(selectors.download_link)
    except (ValueError, NotImplementedError):
        download = None
    if download is not None:
        download_href = download.get("href") or (download.find("a", href=True) or {}).get("href")
        if download_href:
            download_ref = urljoin(base_url, download_href)

    listing_id = _clean_site_id(_select_text(element, selectors.rfp_id)) or derive_listing_id(title, posted)

    return OpportunityListing(
        id=listing_id,
        title=title,
        detail_ref=urljoin(base_url, href),
        posted_date=posted,
        due_date=due,
        download_ref=download_ref,
    )


def find_next_page(soup: BeautifulSoup, selectors: ListingSelectors, base_url: str) -> Optional[str]:
    """Return the absolute next-page URL, or None when there is no next page."""
    try:
        candidates = soup.select(selectors.next_page)
    except (ValueError, NotImplementedError):
        candidates = []

    for candidate in candidates:
        link = candidate if candidate.name == "a" else candidate.find("a", href=True)
        if link is None or not link.get("href"):
            continue
        classes = " ".join(candidate.get("class", []) + link.get("class", [])).lower()
        if "disabled" in classes:
            continue
        href = link["href"].strip()
        if href.startswith(("#", "javascript:")):
            continue
        return urljoin(base_url, href)
    return None


def parse_listing_html(html: str, selectors: ListingSelectors, base_url: str) -> ListingPage:
    """Parse a listing page without touching the browser."""
    soup = BeautifulSoup(html, "lxml")
    page = ListingPage(url=base_url)

    for name, strategy in RECORD_STRATEGIES:
        elements = strategy(soup, selectors)
        if not elements:
            continue

        records = []
        skipped = 0
        for element in elements:
            try:
                record = parse_record(element, selectors, base_url)
            except Exception as e:
                logger.warning(f"Failed to parse listing record with strategy '{name}': {e}")
                record = None
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if records:
            page.records = records
            page.strategy = name
            page.skipped = skipped
            break
        logger.debug(f"Strategy '{name}' found {len(elements)} elements but no parseable records")

    page.next_url = find_next_page(soup, selectors, base_url)
    return page


class ListingExtractor:
    """Walks the paginated category listing through the authenticated session."""

    def __init__(self, session: SessionManager, selectors: ListingSelectors, start_url: str, max_pages: int = 25):
        self.session = session
        self.selectors = selectors
        self.start_url = start_url
        self.max_pages = max_pages
        self.stats = {"pages": 0, "records": 0, "skipped": 0, "duplicates": 0}

    async def extract_page(self, url: str) -> ListingPage:
        """Open one listing page and parse it."""
        handle = await self.session.open(url)
        html = await handle.content()
        page = parse_listing_html(html, self.selectors, handle.url or url)
        logger.info(
            f"Listing page {url}: {len(page.records)} records via {page.strategy or 'no strategy'}, "
            f"{page.skipped} skipped, next={'yes' if page.next_url else 'no'}"
        )
        return page

    async def extract_all(self) -> List[OpportunityListing]:
        """
        Follow next-page links until none is present.

        Raises:
            ListingError: The first listing page could not be loaded
        """
        records: List[OpportunityListing] = []
        seen_ids = set()
        visited = set()
        url: Optional[str] = self.start_url

        while url and url not in visited:
            if len(visited) >= self.max_pages:
                logger.warning(f"Stopping pagination after {self.max_pages} pages")
                break
            visited.add(url)

            try:
                page = await self.extract_page(url)
            except NavigationError as e:
                if not records and len(visited) == 1:
                    raise ListingError(f"Cannot load listing page {url}: {e}", url) from e
                logger.error(f"Stopping pagination, page {url} failed: {e}")
                break

            self.stats["pages"] += 1
            self.stats["skipped"] += page.skipped
            for record in page.records:
                if record.id in seen_ids:
                    self.stats["duplicates"] += 1
                    continue
                seen_ids.add(record.id)
                records.append(record)

            url = page.next_url

        self.stats["records"] = len(records)
        return records
