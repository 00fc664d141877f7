"""
RSS feed discovery.

An alternative to walking the category listing: the feed is public, so no
session is needed to discover opportunities. Feed items become the same
``OpportunityListing`` records (with ``source="rss"``) and go through the
same id dedup and since-date filter as listing records.
"""

import asyncio
import logging
from datetime import date
from typing import List, Optional

import aiohttp
from bs4 import BeautifulSoup

from ..exceptions import ListingError
from ..models import OpportunityListing
from ..utils.dates import parse_listing_date
from .listing import derive_listing_id

logger = logging.getLogger(__name__)


def parse_feed(xml: str, max_items: int = 100, since: Optional[date] = None) -> List[OpportunityListing]:
    """Convert feed XML into listing records, newest first as published."""
    soup = BeautifulSoup(xml, "xml")
    records: List[OpportunityListing] = []

    for item in soup.find_all("item"):
        title_tag = item.find("title")
        link_tag = item.find("link")
        title = title_tag.get_text(strip=True) if title_tag else ""
        link = link_tag.get_text(strip=True) if link_tag else ""
        if not link:
            guid = item.find("guid")
            link = guid.get_text(strip=True) if guid else ""
        if not title or not link:
            logger.debug("Skipping feed item without title or link")
            continue

        pub_tag = item.find("pubDate")
        posted = parse_listing_date(pub_tag.get_text(strip=True)) if pub_tag else None

        if since is not None and posted is not None and posted < since:
            continue

        records.append(OpportunityListing(
            id=derive_listing_id(title, posted),
            title=" ".join(title.split()),
            detail_ref=link,
            posted_date=posted,
            source="rss",
        ))

        if len(records) >= max_items:
            break

    return records


class RSSFeedReader:
    """Fetches and parses the RFP feed."""

    def __init__(self, feed_url: str, timeout: float = 10.0, max_items: int = 100, user_agent: Optional[str] = None):
        self.feed_url = feed_url
        self.timeout = timeout
        self.max_items = max_items
        self.user_agent = user_agent

    async def fetch(self, since: Optional[date] = None) -> List[OpportunityListing]:
        """
        Fetch the feed and return records posted on or after ``since``.

        Raises:
            ListingError: The feed could not be retrieved
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        headers = {"User-Agent": self.user_agent} if self.user_agent else {}

        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                async with session.get(self.feed_url) as response:
                    if response.status != 200:
                        raise ListingError(f"Feed returned HTTP {response.status}", self.feed_url)
                    xml = await response.text()
        except aiohttp.ClientError as e:
            raise ListingError(f"Failed to fetch feed: {e}", self.feed_url) from e
        except asyncio.TimeoutError as e:
            raise ListingError(f"Timed out fetching feed after {self.timeout}s", self.feed_url) from e

        records = parse_feed(xml, self.max_items, since)
        logger.info(f"Feed returned {len(records)} items since {since}")
        return records
