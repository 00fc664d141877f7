"""
Date parsing for listing pages and feeds.

Listing rows carry compound text such as
"Posted Date Thursday, 30 October, 2025 Expiry Date Friday, 5 December, 2025";
``split_labeled_dates`` splits it on the labels before parsing.
"""

import re
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Dict, Optional

DATE_LABELS = {
    "posted": ("Posted Date", "Posted On", "Posted", "Published"),
    "due": ("Expiry Date", "Due Date", "Closing Date", "Deadline", "Expires"),
}

DATE_FORMATS = [
    "%A, %d %B, %Y",
    "%d %B, %Y",
    "%d %B %Y",
    "%A, %B %d, %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y-%m-%d",
]

_LABEL_PATTERN = re.compile(
    "(" + "|".join(
        re.escape(label)
        for labels in DATE_LABELS.values()
        for label in sorted(labels, key=len, reverse=True)
    ) + r")\s*:?",
    re.IGNORECASE,
)


def _label_key(label: str) -> Optional[str]:
    label = label.lower()
    for key, labels in DATE_LABELS.items():
        if any(label == candidate.lower() for candidate in labels):
            return key
    return None


def split_labeled_dates(text: str) -> Dict[str, str]:
    """
    Split compound date text into labeled segments.

    Returns a dict with keys ``posted`` and/or ``due`` mapped to the raw text
    that follows each label up to the next label. The first occurrence of a
    label wins.
    """
    if not text:
        return {}

    text = " ".join(text.split())
    matches = list(_LABEL_PATTERN.finditer(text))
    segments: Dict[str, str] = {}

    for index, match in enumerate(matches):
        key = _label_key(match.group(1))
        if key is None or key in segments:
            continue
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        value = text[match.end():end].strip(" :-|,")
        if value:
            segments[key] = value

    return segments


def parse_listing_date(text: Optional[str]) -> Optional[date]:
    """Parse a date in any of the formats seen on listing pages and feeds."""
    if not text:
        return None

    cleaned = " ".join(text.split()).strip(" .,")
    if not cleaned:
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    # RFC 822, as used by RSS pubDate
    try:
        return parsedate_to_datetime(cleaned).date()
    except (TypeError, ValueError, IndexError):
        pass

    # Date embedded in surrounding text
    embedded = [
        (r"(\d{1,2}/\d{1,2}/\d{4})", "%m/%d/%Y"),
        (r"(\d{4}-\d{2}-\d{2})", "%Y-%m-%d"),
        (r"(\d{1,2}-\d{1,2}-\d{4})", "%m-%d-%Y"),
        (r"(\d{1,2} [A-Z][a-z]+,? \d{4})", None),
        (r"([A-Z][a-z]+ \d{1,2}, \d{4})", None),
    ]
    for pattern, fmt in embedded:
        match = re.search(pattern, cleaned)
        if not match:
            continue
        candidate = match.group(1)
        formats = [fmt] if fmt else ["%d %B, %Y", "%d %B %Y", "%B %d, %Y", "%b %d, %Y"]
        for candidate_fmt in formats:
            try:
                return datetime.strptime(candidate, candidate_fmt).date()
            except ValueError:
                continue

    return None
