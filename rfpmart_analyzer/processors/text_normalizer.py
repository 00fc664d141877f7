"""
Text extraction for the document formats found in RFP bundles.

Dispatches on the declared type (extension or MIME type):

- PDF via pypdf, with page count and document info metadata
- DOCX via python-docx, including table cell text
- legacy DOC converted to DOCX by LibreOffice headless
- RTF best effort, with a warning attached
- plain text with encoding detection through BeautifulSoup's UnicodeDammit

Unsupported types raise ``UnsupportedFormatError`` instead of returning an
empty string.
"""

import io
import logging
import re
import shutil
import subprocess
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Tuple

from bs4 import UnicodeDammit
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..exceptions import ExtractionError, UnsupportedFormatError
from ..models import DocumentBuffer, ExtractedText
from .archive import file_extension

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "text/plain": ".txt",
    "application/rtf": ".rtf",
    "text/rtf": ".rtf",
    "application/zip": ".zip",
    "application/x-zip-compressed": ".zip",
    "application/vnd.rar": ".rar",
    "application/x-rar-compressed": ".rar",
}

ZIP_MAGIC = b"PK\x03\x04"
OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def resolve_type(declared_type: str, filename: str = "") -> str:
    """Normalize a declared type to a lowercase extension such as ``.pdf``."""
    declared = (declared_type or "").strip().lower()
    if declared in MIME_TYPES:
        return MIME_TYPES[declared]
    if declared.startswith("."):
        return declared
    if declared and "/" not in declared:
        return f".{declared}"
    return file_extension(filename)


def clean_text(text: str) -> str:
    """Normalize line endings and drop control characters and blank runs."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    text = re.sub(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]", " ", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class TextNormalizer:
    """Converts one document buffer into extracted text."""

    def __init__(self, conversion_timeout: float = 120.0):
        self.conversion_timeout = conversion_timeout
        self.extractors: Dict[str, Callable[[DocumentBuffer], Tuple[str, dict]]] = {
            ".pdf": self._extract_pdf,
            ".docx": self._extract_docx,
            ".doc": self._extract_doc,
            ".rtf": self._extract_rtf,
            ".txt": self._extract_plain_text,
        }

    @property
    def supported_types(self) -> List[str]:
        return sorted(self.extractors)

    def normalize(self, buffer: DocumentBuffer) -> ExtractedText:
        """
        Extract text from a document buffer.

        Raises:
            UnsupportedFormatError: No extractor for the declared type
            ExtractionError: The document is corrupt, encrypted or unreadable
        """
        doc_type = resolve_type(buffer.declared_type, buffer.filename)
        extractor = self.extractors.get(doc_type)
        if extractor is None:
            raise UnsupportedFormatError(
                f"Unsupported document type {doc_type or '(unknown)'} for {buffer.filename}; "
                f"supported: {', '.join(self.supported_types)}",
                buffer.filename,
                doc_type,
            )

        text, details = extractor(buffer)
        text = clean_text(text)
        warnings = list(details.pop("warnings", []))
        if not text:
            warnings.append("no text extracted")

        extracted = ExtractedText.build(
            source_filename=buffer.filename,
            text=text,
            format=doc_type.lstrip("."),
            page_count=details.pop("page_count", None),
            warnings=warnings,
            metadata=details,
        )
        for warning in warnings:
            logger.warning(f"{buffer.filename}: {warning}")
        logger.debug(f"Extracted {extracted.word_count} words from {buffer.filename}")
        return extracted

    def _extract_pdf(self, buffer: DocumentBuffer) -> Tuple[str, dict]:
        warnings: List[str] = []
        try:
            reader = PdfReader(io.BytesIO(buffer.data))
            if reader.is_encrypted:
                # Many RFP PDFs are "encrypted" with an empty user password
                if not reader.decrypt(""):
                    raise ExtractionError(f"{buffer.filename} is password protected", buffer.filename, "pdf")
                warnings.append("decrypted with empty password")

            pages = []
            for index, page in enumerate(reader.pages):
                try:
                    pages.append(page.extract_text() or "")
                except Exception as e:
                    warnings.append(f"page {index + 1} could not be read: {e}")

            details = {"page_count": len(reader.pages), "warnings": warnings}
            if reader.metadata:
                for key, field_name in (("/Title", "title"), ("/Author", "author"), ("/Producer", "producer")):
                    value = reader.metadata.get(key)
                    if value:
                        details[field_name] = str(value)
            return "\n\n".join(pages), details

        except ExtractionError:
            raise
        except (PdfReadError, ValueError, KeyError, TypeError) as e:
            raise ExtractionError(f"Cannot read PDF {buffer.filename}: {e}", buffer.filename, "pdf") from e

    def _extract_docx(self, buffer: DocumentBuffer) -> Tuple[str, dict]:
        try:
            document = DocxDocument(io.BytesIO(buffer.data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
            raise ExtractionError(f"Cannot read DOCX {buffer.filename}: {e}", buffer.filename, "docx") from e

        parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))

        details: dict = {"warnings": []}
        core = document.core_properties
        if core.title:
            details["title"] = core.title
        if core.author:
            details["author"] = core.author
        return "\n".join(parts), details

    def _extract_doc(self, buffer: DocumentBuffer) -> Tuple[str, dict]:
        if buffer.data.startswith(ZIP_MAGIC):
            text, details = self._extract_docx(buffer)
            details.setdefault("warnings", []).append("file named .doc is a DOCX package")
            return text, details

        if not buffer.data.startswith(OLE_MAGIC):
            raise ExtractionError(f"{buffer.filename} is not a Word document", buffer.filename, "doc")

        converted = self._convert_legacy_doc(buffer)
        text, details = self._extract_docx(DocumentBuffer(
            data=converted,
            filename=buffer.filename,
            declared_type=".docx",
            owner_opportunity_id=buffer.owner_opportunity_id,
        ))
        details.setdefault("warnings", []).append("converted from legacy .doc with LibreOffice")
        return text, details

    def _convert_legacy_doc(self, buffer: DocumentBuffer) -> bytes:
        """Convert a Word 97-2003 file to DOCX with LibreOffice headless."""
        soffice = shutil.which("soffice") or shutil.which("libreoffice")
        if soffice is None:
            raise ExtractionError(
                f"Cannot read legacy Word file {buffer.filename}: LibreOffice is not installed",
                buffer.filename,
                "doc",
            )

        with tempfile.TemporaryDirectory(prefix="rfpmart_doc_") as tmpdir:
            source = Path(tmpdir) / "source.doc"
            source.write_bytes(buffer.data)
            outdir = Path(tmpdir) / "out"
            outdir.mkdir()
            cmd = [soffice, "--headless", "--convert-to", "docx", "--outdir", str(outdir), str(source)]
            try:
                proc = subprocess.run(
                    cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                    timeout=self.conversion_timeout, check=False,
                )
            except (subprocess.TimeoutExpired, OSError) as e:
                raise ExtractionError(f"LibreOffice failed on {buffer.filename}: {e}", buffer.filename, "doc") from e

            if proc.returncode != 0:
                stderr = proc.stderr.decode(errors="ignore").strip()
                raise ExtractionError(
                    f"LibreOffice convert failed for {buffer.filename} rc={proc.returncode}: {stderr}",
                    buffer.filename,
                    "doc",
                )

            out = outdir / "source.docx"
            if not out.exists():
                # Some LibreOffice builds pick a different output name
                out = next(iter(sorted(outdir.glob("*.docx"))), None)
            if out is None:
                raise ExtractionError(f"LibreOffice produced no DOCX for {buffer.filename}", buffer.filename, "doc")
            return out.read_bytes()

    def _extract_rtf(self, buffer: DocumentBuffer) -> Tuple[str, dict]:
        raw = buffer.data.decode("latin-1")
        if not raw.lstrip().startswith("{\\rtf"):
            raise ExtractionError(f"{buffer.filename} is not an RTF document", buffer.filename, "rtf")

        text = re.sub(r"\\'([0-9a-fA-F]{2})", lambda m: bytes.fromhex(m.group(1)).decode("cp1252", errors="ignore"), raw)
        text = re.sub(r"\{\\(fonttbl|colortbl|stylesheet|info)[^{}]*(\{[^{}]*\}[^{}]*)*\}", "", text)
        text = re.sub(r"\{\\\*[^{}]*\}", "", text)
        text = re.sub(r"\\(par|line)\b ?", "\n", text)
        text = re.sub(r"\\tab\b ?", "\t", text)
        text = re.sub(r"\\[a-zA-Z]+-?\d* ?", "", text)
        text = re.sub(r"\\([{}\\])", r"\1", text)
        text = text.replace("{", "").replace("}", "")
        return text, {"warnings": ["RTF control words stripped; formatting lost"]}

    def _extract_plain_text(self, buffer: DocumentBuffer) -> Tuple[str, dict]:
        dammit = UnicodeDammit(buffer.data, ["utf-8", "windows-1252"])
        if dammit.unicode_markup is None:
            raise ExtractionError(f"Cannot decode {buffer.filename}", buffer.filename, "txt")

        warnings = []
        encoding = (dammit.original_encoding or "utf-8").lower()
        if encoding not in ("utf-8", "ascii"):
            warnings.append(f"decoded as {encoding}")
        return dammit.unicode_markup, {"encoding": encoding, "warnings": warnings}
