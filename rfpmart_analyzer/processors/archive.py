"""
In-memory archive expansion.

Zip bundles are opened from a byte buffer and never written to disk. Entries
are filtered by extension and size; nested zips are expanded up to a depth
limit.
"""

import io
import logging
import posixpath
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Iterable, List

from ..exceptions import ArchiveError
from ..models import DocumentBuffer, Rejection

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS = (".zip",)


def file_extension(filename: str) -> str:
    return posixpath.splitext(filename.lower())[1]


@dataclass
class ExpansionResult:
    documents: List[DocumentBuffer] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)


class ArchiveExpander:
    """Turns an archive buffer into candidate document buffers."""

    def __init__(self, allowed_extensions: Iterable[str], max_entry_size: int, max_depth: int = 2):
        self.allowed_extensions = {ext.lower() for ext in allowed_extensions}
        self.max_entry_size = max_entry_size
        self.max_depth = max_depth

    @staticmethod
    def is_archive(filename: str) -> bool:
        return file_extension(filename) in ARCHIVE_EXTENSIONS

    def expand(self, data: bytes, owner_opportunity_id: str, archive_name: str = "archive.zip") -> ExpansionResult:
        """
        Expand an archive held in memory.

        Directory entries are skipped silently. Disallowed types, oversized
        and unreadable entries are skipped with a recorded reason. A valid
        archive with no usable entries gives an empty result, not an error.

        Raises:
            ArchiveError: The buffer is not a readable zip archive
        """
        result = ExpansionResult()
        self._expand_into(result, data, owner_opportunity_id, archive_name, depth=0)
        logger.info(
            f"Expanded {archive_name} for {owner_opportunity_id}: "
            f"{len(result.documents)} documents, {len(result.rejections)} skipped"
        )
        return result

    def _expand_into(self, result: ExpansionResult, data: bytes, owner: str, archive_name: str, depth: int):
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as e:
            raise ArchiveError(f"Cannot open archive {archive_name}: {e}", archive_name, "zip") from e

        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue

                entry_name = info.filename
                basename = posixpath.basename(entry_name)
                if not basename or entry_name.startswith("__MACOSX/") or basename.startswith("._"):
                    continue

                extension = file_extension(basename)

                if extension in ARCHIVE_EXTENSIONS:
                    if depth >= self.max_depth:
                        result.rejections.append(Rejection(entry_name, "nested_too_deep", f"depth {depth + 1}"))
                        continue
                    nested = self._read_entry(archive, info, result)
                    if nested is None:
                        continue
                    try:
                        self._expand_into(result, nested, owner, f"{archive_name}/{entry_name}", depth + 1)
                    except ArchiveError as e:
                        result.rejections.append(Rejection(entry_name, "corrupt_archive", e.message))
                    continue

                if extension not in self.allowed_extensions:
                    logger.debug(f"Skipping {entry_name}: extension {extension or '(none)'} not allowed")
                    result.rejections.append(Rejection(entry_name, "disallowed_type", extension or None))
                    continue

                if info.file_size > self.max_entry_size:
                    result.rejections.append(Rejection(
                        entry_name, "oversized", f"{info.file_size} bytes > {self.max_entry_size}"
                    ))
                    continue

                content = self._read_entry(archive, info, result)
                if content is None:
                    continue

                result.documents.append(DocumentBuffer(
                    data=content,
                    filename=basename,
                    declared_type=extension,
                    owner_opportunity_id=owner,
                ))

    def _read_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, result: ExpansionResult):
        """Read one entry, capped at one byte past the size limit."""
        try:
            with archive.open(info) as handle:
                content = handle.read(self.max_entry_size + 1)
        except RuntimeError as e:
            # zipfile raises RuntimeError for encrypted entries
            result.rejections.append(Rejection(info.filename, "encrypted", str(e)))
            return None
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as e:
            result.rejections.append(Rejection(info.filename, "corrupt_entry", str(e)))
            return None

        if len(content) > self.max_entry_size:
            result.rejections.append(Rejection(
                info.filename, "oversized", f"more than {self.max_entry_size} bytes when decompressed"
            ))
            return None
        return content
