"""
Discovery sources for new opportunities.

Both sources return listings in site order. Since-date and known-id
filtering happen in the coordinator so that the two modes share one
definition of "new".
"""

from datetime import datetime
from typing import List, Protocol

from ..models import OpportunityListing
from ..scrapers.listing import ListingExtractor
from ..scrapers.rss import RSSFeedReader


class Discovery(Protocol):
    async def discover(self, since: datetime) -> List[OpportunityListing]:
        ...


class ListingDiscovery:
    """Walks the paginated category listing."""

    name = "listing"

    def __init__(self, extractor: ListingExtractor):
        self.extractor = extractor

    async def discover(self, since: datetime) -> List[OpportunityListing]:
        return await self.extractor.extract_all()


class FeedDiscovery:
    """Reads the RSS feed; items older than the cutoff are dropped while parsing."""

    name = "rss"

    def __init__(self, reader: RSSFeedReader):
        self.reader = reader

    async def discover(self, since: datetime) -> List[OpportunityListing]:
        return await self.reader.fetch(since.date())
