"""
Index builder — inverted index over document segments.

The index is built once from a fixed set of documents and never mutated
afterwards; every mapping it exposes is a read-only view.  Postings for a
term are ordered by the insertion order of (document, segment), with
documents taken in ``doc_id`` order, so two builds over the same documents
produce identical postings.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from .store import Document, Segment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Posting:
    """One occurrence record of a term: (document, segment, term frequency)."""

    doc_id: str
    segment_id: int
    tf: int


@dataclass(frozen=True)
class Index:
    """
    Immutable inverted index plus the statistics needed for scoring.

    Attributes
    ----------
    postings:
        Term → postings, in (document, segment) insertion order.
    doc_freq:
        Term → number of segments containing the term.
    segment_count:
        Total number of segments (``N``).
    avg_segment_length:
        Mean token count per segment.
    documents:
        ``doc_id`` → :class:`Document`, used to recover excerpts.
    """

    postings: Mapping[str, tuple[Posting, ...]] = field(repr=False)
    doc_freq: Mapping[str, int] = field(repr=False)
    segment_count: int
    avg_segment_length: float
    documents: Mapping[str, Document] = field(repr=False)

    @property
    def term_count(self) -> int:
        return len(self.postings)

    @property
    def document_count(self) -> int:
        return len(self.documents)

    def segment(self, doc_id: str, segment_id: int) -> Segment:
        return self.documents[doc_id].segments[segment_id]

    def excerpt(self, doc_id: str, segment_id: int) -> str:
        """Return the raw, un-tokenized text of a segment."""
        return self.documents[doc_id].excerpt(segment_id)


def build_index(documents: Iterable[Document]) -> Index:
    """
    Build an :class:`Index` from *documents*.

    Cost is linear in the total number of tokens; segment token multisets
    were computed by the document store, so no text is re-tokenized here.

    Raises
    ------
    ValueError
        If two documents share the same ``doc_id``.
    """
    t0 = time.perf_counter()
    ordered = sorted(documents, key=lambda d: d.doc_id)

    postings: dict[str, list[Posting]] = {}
    docs: dict[str, Document] = {}
    segment_count = 0
    total_length = 0

    for doc in ordered:
        if doc.doc_id in docs:
            raise ValueError(f"Duplicate document id: {doc.doc_id}")
        docs[doc.doc_id] = doc
        for seg in doc.segments:
            segment_count += 1
            total_length += seg.length
            # Counter preserves first-seen order, which is text order
            for term, tf in seg.terms.items():
                postings.setdefault(term, []).append(
                    Posting(doc_id=doc.doc_id, segment_id=seg.segment_id, tf=tf)
                )

    frozen = {term: tuple(plist) for term, plist in postings.items()}
    doc_freq = {term: len(plist) for term, plist in frozen.items()}
    avg = total_length / segment_count if segment_count else 0.0

    index = Index(
        postings=MappingProxyType(frozen),
        doc_freq=MappingProxyType(doc_freq),
        segment_count=segment_count,
        avg_segment_length=avg,
        documents=MappingProxyType(docs),
    )
    logger.info(
        "[KB] Index built: %d documents, %d segments, %d terms in %.1fms",
        len(docs), segment_count, len(frozen), (time.perf_counter() - t0) * 1000,
    )
    return index
