"""
Custom exceptions for the RFP Mart Analyzer.

Errors below the opportunity level are caught and recorded on that
opportunity's result. Session and listing level errors abort the run.
"""


class AnalyzerError(Exception):
    """Base exception for all analyzer errors."""

    def __init__(self, message: str, url: str = None):
        self.message = message
        self.url = url
        super().__init__(self.message)


class AuthError(AnalyzerError):
    """Raised when the site session cannot be established.

    ``fatal`` errors (rejected credentials, exhausted retries) end the run.
    """

    def __init__(self, message: str, reason: str = "unknown", fatal: bool = True, url: str = None):
        self.reason = reason
        self.fatal = fatal
        super().__init__(message, url)


class NavigationError(AnalyzerError):
    """Raised when a page navigation fails or times out."""

    def __init__(self, message: str, url: str = None, status_code: int = None):
        self.status_code = status_code
        super().__init__(message, url)


class SessionExpiredError(NavigationError):
    """Raised when a navigation lands on the login page."""


class ListingError(AnalyzerError):
    """Raised when the listing source cannot be read at all."""


class AcquisitionError(AnalyzerError):
    """Raised when an opportunity's artifact cannot be acquired."""

    def __init__(self, message: str, opportunity_id: str = None, reason: str = "acquisition_failed", url: str = None):
        self.opportunity_id = opportunity_id
        self.reason = reason
        super().__init__(message, url)


class ExtractionError(AnalyzerError):
    """Raised when text cannot be extracted from a document."""

    def __init__(self, message: str, filename: str = None, format: str = None):
        self.filename = filename
        self.format = format
        super().__init__(message)


class UnsupportedFormatError(ExtractionError):
    """Raised for document types no extractor handles."""


class ArchiveError(ExtractionError):
    """Raised when an archive is corrupt or unreadable."""


class InsufficientCorpusError(AnalyzerError):
    """Raised when an opportunity's combined text is too short to score."""

    def __init__(self, message: str, opportunity_id: str = None, char_count: int = 0, minimum: int = 0):
        self.opportunity_id = opportunity_id
        self.char_count = char_count
        self.minimum = minimum
        super().__init__(message)


class ScoringError(AnalyzerError):
    """Raised inside the scoring engine; never escapes it."""


class RetentionError(AnalyzerError):
    """Raised when a cleanup pass cannot run."""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)
