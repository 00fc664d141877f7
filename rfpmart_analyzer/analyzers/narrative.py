"""
Optional qualitative fit narrative.

A provider turns an opportunity's corpus and deterministic score into prose.
The score is authoritative; narratives are attached for readers only.
"""

from typing import Optional, Protocol

from ..models import Corpus, FitResult, OpportunityListing


class NarrativeProvider(Protocol):
    def describe(self, listing: OpportunityListing, corpus: Corpus, fit: FitResult) -> Optional[str]:
        ...


class NullNarrativeProvider:
    """Used when no narrative service is configured."""

    def describe(self, listing: OpportunityListing, corpus: Corpus, fit: FitResult) -> Optional[str]:
        return None
