"""
Document acquisition for discovered opportunities.

For each listing the orchestrator opens the detail page, locates the download
link, retrieves the artifact and turns it into document buffers (expanding
zip bundles in memory). Retrieval goes to memory or to disk depending on
configuration; both retrievers share the same validation.

Failures are recorded on the opportunity's ``AcquisitionResult`` and never
abort the batch. Only authentication errors propagate.
"""

import asyncio
import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urljoin, urlparse

from bs4 import BeautifulSoup

from ..config import AcquisitionConfig
from ..exceptions import AcquisitionError, ArchiveError, AuthError, NavigationError
from ..models import AcquisitionResult, CorpusResult, DocumentBuffer, OpportunityListing, Rejection
from ..processors.archive import ArchiveExpander, file_extension
from ..processors.document_processor import DocumentProcessor
from ..processors.text_normalizer import MIME_TYPES, OLE_MAGIC, ZIP_MAGIC
from ..utils.logging import log_acquisition
from .auth import SessionHandle, SessionManager

logger = logging.getLogger(__name__)

PAGE_SUFFIXES = {"", ".html", ".htm", ".php", ".asp", ".aspx", ".jsp", ".cfm"}
_SKIP_HREF = re.compile(r"^(#|javascript:|mailto:|tel:)|login|logout|signin|register|account|profile", re.I)
_FILENAME_HEADER = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.I)


# Download link location, tried in order.

def _link_by_host(links: Sequence[Tuple[str, str]], host_pattern: str, extensions: Sequence[str]) -> Optional[str]:
    for href, _ in links:
        if host_pattern and host_pattern.lower() in urlparse(href).netloc.lower():
            return href
    return None


def _link_by_extension(links: Sequence[Tuple[str, str]], host_pattern: str, extensions: Sequence[str]) -> Optional[str]:
    for href, _ in links:
        if file_extension(unquote(urlparse(href).path)) in extensions:
            return href
    return None


def _link_by_keyword(links: Sequence[Tuple[str, str]], host_pattern: str, extensions: Sequence[str]) -> Optional[str]:
    for href, text in links:
        haystack = f"{href} {text}".lower()
        if "download" in haystack or "document" in haystack:
            return href
    return None


def _first_plausible_link(links: Sequence[Tuple[str, str]], host_pattern: str, extensions: Sequence[str]) -> Optional[str]:
    for href, _ in links:
        if file_extension(unquote(urlparse(href).path)) not in PAGE_SUFFIXES:
            return href
    return None


LINK_STRATEGIES: Sequence[Callable] = (
    _link_by_host,
    _link_by_extension,
    _link_by_keyword,
    _first_plausible_link,
)


def locate_download_link(html: str, base_url: str, host_pattern: str, extensions: Sequence[str]) -> Optional[str]:
    """Find the most likely artifact link on a detail page."""
    soup = BeautifulSoup(html, "lxml")
    links: List[Tuple[str, str]] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or _SKIP_HREF.search(href):
            continue
        links.append((urljoin(base_url, href), anchor.get_text(" ", strip=True)))

    for strategy in LINK_STRATEGIES:
        found = strategy(links, host_pattern, extensions)
        if found:
            logger.debug(f"Download link found by {strategy.__name__}: {found}")
            return found
    return None


def filename_from_response(url: str, headers: Optional[Dict[str, str]], fallback: str) -> str:
    """Take the filename from Content-Disposition, then the URL path."""
    disposition = (headers or {}).get("content-disposition", "")
    match = _FILENAME_HEADER.search(disposition)
    if match:
        name = posixpath.basename(unquote(match.group(1).strip()))
        if name:
            return name
    name = posixpath.basename(unquote(urlparse(url).path))
    return name or fallback


def sniff_extension(data: bytes) -> Optional[str]:
    """Guess an extension from magic bytes."""
    head = data[:8]
    if head.startswith(b"%PDF"):
        return ".pdf"
    if head.startswith(ZIP_MAGIC):
        return ".docx" if b"word/document.xml" in data[:65536] else ".zip"
    if head.startswith(OLE_MAGIC):
        return ".doc"
    if head.startswith(b"Rar!"):
        return ".rar"
    if head.startswith(b"{\\rtf"):
        return ".rtf"
    return None


@dataclass
class RetrievedArtifact:
    data: bytes
    filename: str
    declared_type: str
    content_type: Optional[str] = None
    path: Optional[str] = None
    reused: bool = False


class ArtifactRetriever:
    """Shared validation for memory and disk retrieval."""

    mode = "base"

    def __init__(self, config: AcquisitionConfig):
        self.config = config

    async def retrieve(self, handle: SessionHandle, url: str, listing: OpportunityListing) -> RetrievedArtifact:
        raise NotImplementedError

    def _declared_type(self, filename: str, content_type: Optional[str], data: bytes = b"") -> str:
        extension = file_extension(filename)
        if extension in self.config.allowed_extensions:
            return extension
        if content_type and MIME_TYPES.get(content_type.split(";")[0].strip().lower()) in self.config.allowed_extensions:
            return MIME_TYPES[content_type.split(";")[0].strip().lower()]
        if data:
            sniffed = sniff_extension(data)
            if sniffed in self.config.allowed_extensions:
                return sniffed
        return extension

    def prevalidate(self, url: str, headers: Optional[Dict[str, str]], listing: OpportunityListing) -> None:
        """
        Reject before retrieval when the transport exposed size or type.

        Raises:
            AcquisitionError: Declared size over the limit, or a known disallowed type
        """
        if not headers:
            return

        length = headers.get("content-length")
        if length and length.isdigit() and int(length) > self.config.max_file_size:
            raise AcquisitionError(
                f"Artifact is {int(length)} bytes, limit is {self.config.max_file_size}",
                listing.id, "oversized", url,
            )

        filename = filename_from_response(url, headers, "")
        declared = self._declared_type(filename, headers.get("content-type"))
        if declared and declared not in PAGE_SUFFIXES and declared not in self.config.allowed_extensions:
            raise AcquisitionError(f"Artifact type {declared} is not allowed", listing.id, "disallowed_type", url)

    def validate(self, artifact: RetrievedArtifact, listing: OpportunityListing, url: str) -> RetrievedArtifact:
        """
        Enforce size and type on the retrieved bytes.

        Raises:
            AcquisitionError: Oversized, empty, disallowed or unsupported artifact
        """
        size = len(artifact.data)
        if size == 0:
            raise AcquisitionError(f"Artifact {artifact.filename} is empty", listing.id, "empty_artifact", url)
        if size > self.config.max_file_size:
            raise AcquisitionError(
                f"Artifact {artifact.filename} is {size} bytes, limit is {self.config.max_file_size}",
                listing.id, "oversized", url,
            )

        declared = self._declared_type(artifact.filename, artifact.content_type, artifact.data)
        if declared not in self.config.allowed_extensions:
            raise AcquisitionError(
                f"Artifact {artifact.filename} has disallowed type {declared or '(unknown)'}",
                listing.id, "disallowed_type", url,
            )
        if declared == ".rar":
            raise AcquisitionError(
                f"RAR archives cannot be expanded ({artifact.filename})",
                listing.id, "unsupported_archive", url,
            )

        artifact.declared_type = declared
        if file_extension(artifact.filename) != declared:
            artifact.filename = f"{posixpath.splitext(artifact.filename)[0] or listing.id}{declared}"
        return artifact


class MemoryRetriever(ArtifactRetriever):
    """Fetches the artifact into memory; nothing touches the filesystem."""

    mode = "memory"

    async def retrieve(self, handle: SessionHandle, url: str, listing: OpportunityListing) -> RetrievedArtifact:
        self.prevalidate(url, await handle.probe(url), listing)
        resource = await handle.fetch(url)
        artifact = RetrievedArtifact(
            data=resource.data,
            filename=filename_from_response(url, resource.headers, f"{listing.id}.bin"),
            declared_type="",
            content_type=resource.content_type,
        )
        return self.validate(artifact, listing, url)


class DiskRetriever(ArtifactRetriever):
    """Saves the artifact under ``download_dir/<opportunity id>/``; reuses a previous download."""

    mode = "disk"

    def target_dir(self, listing: OpportunityListing) -> Path:
        return Path(self.config.download_dir) / listing.id

    def _existing_download(self, directory: Path) -> Optional[Path]:
        if not directory.is_dir():
            return None
        for path in sorted(directory.iterdir()):
            if path.is_file() and path.stat().st_size > 0 and file_extension(path.name) in self.config.allowed_extensions:
                return path
        return None

    async def retrieve(self, handle: SessionHandle, url: str, listing: OpportunityListing) -> RetrievedArtifact:
        directory = self.target_dir(listing)
        existing = self._existing_download(directory)
        if existing is not None:
            logger.info(f"Reusing existing download {existing} for {listing.id}")
            artifact = RetrievedArtifact(
                data=existing.read_bytes(), filename=existing.name, declared_type="",
                path=str(existing), reused=True,
            )
            return self.validate(artifact, listing, url)

        self.prevalidate(url, await handle.probe(url), listing)
        path = await handle.download(url, directory)
        artifact = RetrievedArtifact(data=path.read_bytes(), filename=path.name, declared_type="", path=str(path))
        try:
            return self.validate(artifact, listing, url)
        except AcquisitionError:
            path.unlink(missing_ok=True)
            raise


def make_retriever(config: AcquisitionConfig) -> ArtifactRetriever:
    if config.mode == "disk":
        return DiskRetriever(config)
    return MemoryRetriever(config)


class AcquisitionOrchestrator:
    """Acquires and unpacks the documents for one opportunity at a time."""

    def __init__(
        self,
        session: SessionManager,
        config: AcquisitionConfig,
        host_pattern: str,
        expander: Optional[ArchiveExpander] = None,
        processor: Optional[DocumentProcessor] = None,
        retriever: Optional[ArtifactRetriever] = None,
    ):
        self.session = session
        self.config = config
        self.host_pattern = host_pattern
        self.expander = expander or ArchiveExpander(
            config.archive_document_extensions, config.max_archive_entry_size, config.max_archive_depth
        )
        self.processor = processor or DocumentProcessor()
        self.retriever = retriever or make_retriever(config)
        self.stats = {"acquired": 0, "failed": 0, "documents": 0, "rejected": 0}

    async def acquire(self, listing: OpportunityListing) -> AcquisitionResult:
        """
        Visit the detail page, download the artifact and split it into documents.

        Raises:
            AuthError: The session cannot be re-established
        """
        result = AcquisitionResult(listing=listing)
        url = None

        try:
            handle = await self.session.open(listing.detail_ref)
            html = await handle.content()
            url = locate_download_link(
                html, handle.url or listing.detail_ref, self.host_pattern, self.config.allowed_extensions
            ) or listing.download_ref
            if not url:
                raise AcquisitionError("No download link on detail page", listing.id, "no_download_link",
                                       listing.detail_ref)
            listing.download_ref = url

            artifact = await self.retriever.retrieve(handle, url, listing)
            result.artifact_path = artifact.path

            if ArchiveExpander.is_archive(artifact.filename):
                expansion = self.expander.expand(artifact.data, listing.id, artifact.filename)
                result.documents = expansion.documents
                result.rejections.extend(expansion.rejections)
                if not expansion.documents:
                    logger.warning(f"Archive {artifact.filename} for {listing.id} has no usable documents")
            else:
                result.documents = [DocumentBuffer(
                    data=artifact.data,
                    filename=artifact.filename,
                    declared_type=artifact.declared_type,
                    owner_opportunity_id=listing.id,
                )]

        except AuthError:
            raise
        except AcquisitionError as e:
            result.error = f"{e.reason}: {e.message}"
            result.rejections.append(Rejection(url or listing.detail_ref, e.reason, e.message))
        except ArchiveError as e:
            result.error = f"corrupt_archive: {e.message}"
            result.rejections.append(Rejection(e.filename or url or listing.id, "corrupt_archive", e.message))
        except NavigationError as e:
            result.error = f"navigation_failed: {e.message}"
        except Exception as e:
            logger.exception(f"Unexpected error acquiring {listing.id}")
            result.error = f"unexpected_error: {e}"

        if result.error:
            result.documents = []
            self.stats["failed"] += 1
        else:
            self.stats["acquired"] += 1
        self.stats["documents"] += len(result.documents)
        self.stats["rejected"] += len(result.rejections)

        log_acquisition(listing.id, len(result.documents), len(result.rejections), result.success, result.error)
        return result

    async def build_corpus(self, result: AcquisitionResult) -> CorpusResult:
        """Normalize the acquired documents off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.processor.build_corpus, result.listing.id, result.documents)
