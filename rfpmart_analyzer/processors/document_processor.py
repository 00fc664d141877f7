"""
Corpus assembly for one opportunity.

Documents are normalized in a thread pool and concatenated in their original
order, each block preceded by a header naming its source file.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from ..exceptions import ExtractionError, InsufficientCorpusError, UnsupportedFormatError
from ..models import Corpus, CorpusResult, DocumentBuffer, ExtractedText, Rejection
from .text_normalizer import TextNormalizer

logger = logging.getLogger(__name__)

SECTION_HEADER = "\n\n=== {filename} ===\n"


def combine_texts(opportunity_id: str, texts: Sequence[ExtractedText]) -> Corpus:
    """Concatenate extracted texts into a corpus, reusing their counts."""
    usable = [text for text in texts if text.text.strip()]
    combined = "".join(SECTION_HEADER.format(filename=text.source_filename) + text.text for text in usable)
    return Corpus(
        opportunity_id=opportunity_id,
        combined_text=combined.lstrip("\n"),
        document_count=len(usable),
        total_words=sum(text.word_count for text in usable),
        total_chars=sum(text.char_count for text in usable),
        sources=[text.source_filename for text in usable],
    )


class DocumentProcessor:
    """Normalizes document buffers and builds the per-opportunity corpus."""

    def __init__(self, normalizer: Optional[TextNormalizer] = None, max_workers: int = 4, min_corpus_chars: int = 100):
        self.normalizer = normalizer or TextNormalizer()
        self.max_workers = max(1, max_workers)
        self.min_corpus_chars = min_corpus_chars

    def _normalize_one(self, buffer: DocumentBuffer) -> Tuple[Optional[ExtractedText], Optional[Rejection]]:
        try:
            return self.normalizer.normalize(buffer), None
        except ExtractionError as e:
            logger.warning(f"Extraction failed for {buffer.filename} ({buffer.owner_opportunity_id}): {e.message}")
            reason = "unsupported_format" if isinstance(e, UnsupportedFormatError) else "extraction_failed"
            return None, Rejection(buffer.filename, reason, e.message)
        except Exception as e:
            # Parser libraries raise their own types on malformed input
            logger.warning(
                f"Unexpected error extracting {buffer.filename} ({buffer.owner_opportunity_id}): "
                f"{type(e).__name__}: {e}"
            )
            return None, Rejection(buffer.filename, "extraction_failed", f"{type(e).__name__}: {e}")

    def build_corpus(self, opportunity_id: str, documents: Sequence[DocumentBuffer]) -> CorpusResult:
        """
        Normalize every document and combine the results.

        A document that fails extraction is recorded and skipped; the rest of
        the opportunity proceeds.
        """
        if not documents:
            return CorpusResult(corpus=combine_texts(opportunity_id, []))

        if len(documents) == 1 or self.max_workers == 1:
            outcomes = [self._normalize_one(buffer) for buffer in documents]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(documents))) as executor:
                # map() keeps input order
                outcomes = list(executor.map(self._normalize_one, documents))

        texts: List[ExtractedText] = [text for text, _ in outcomes if text is not None]
        failures: List[Rejection] = [failure for _, failure in outcomes if failure is not None]

        corpus = combine_texts(opportunity_id, texts)
        logger.info(
            f"Corpus for {opportunity_id}: {corpus.document_count} documents, "
            f"{corpus.total_words} words, {len(failures)} failed"
        )
        return CorpusResult(corpus=corpus, texts=texts, failures=failures)

    def require_sufficient(self, corpus: Corpus) -> Corpus:
        """
        Refuse corpora too small to score.

        Raises:
            InsufficientCorpusError: No documents, or fewer than the minimum characters
        """
        if corpus.document_count == 0 or corpus.total_chars < self.min_corpus_chars:
            raise InsufficientCorpusError(
                f"Insufficient text content for {corpus.opportunity_id}: "
                f"{corpus.total_chars} characters from {corpus.document_count} documents "
                f"(minimum {self.min_corpus_chars})",
                corpus.opportunity_id,
                corpus.total_chars,
                self.min_corpus_chars,
            )
        return corpus
