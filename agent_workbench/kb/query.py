"""
Query engine — TF-IDF ranking of segments against an :class:`Index`.

For each distinct query term ``t`` and candidate segment ``s``::

    contribution = (tf(t, s) / len(s)) * ln(1 + N / df(t))

where ``N`` is the total segment count.  Only segments sharing at least one
query term are scored.  Equal scores are ordered by ``(doc_id, segment_id)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .index import Index
from .tokenizer import tokenize


@dataclass(frozen=True)
class ScoredSegment:
    """A ranked query hit."""

    doc_id: str
    segment_id: int
    score: float


def idf(index: Index, term: str) -> float:
    """Inverse document frequency of *term*, or 0.0 if it is not indexed."""
    df = index.doc_freq.get(term, 0)
    if df == 0:
        return 0.0
    return math.log(1.0 + index.segment_count / df)


def query(index: Index, text: str, top_k: int) -> list[ScoredSegment]:
    """
    Rank the segments of *index* against the free-text *text*.

    Parameters
    ----------
    index:
        A built index; it is only read.
    text:
        Free-text query, tokenized with the same policy as the corpus.
    top_k:
        Maximum number of hits, must be >= 1.

    Returns
    -------
    list[ScoredSegment]
        At most *top_k* hits, best first.  Empty when no query term survives
        tokenization or no segment contains any query term.
    """
    if top_k < 1:
        raise ValueError("top_k must be >= 1")

    terms = sorted(set(tokenize(text)))
    if not terms:
        return []

    scores: dict[tuple[str, int], float] = {}
    for term in terms:
        plist = index.postings.get(term)
        if not plist:
            continue
        weight = idf(index, term)
        for p in plist:
            length = index.segment(p.doc_id, p.segment_id).length
            key = (p.doc_id, p.segment_id)
            scores[key] = scores.get(key, 0.0) + (p.tf / length) * weight

    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    return [
        ScoredSegment(doc_id=doc_id, segment_id=segment_id, score=score)
        for (doc_id, segment_id), score in ranked[:top_k]
    ]


@dataclass(frozen=True)
class SearchHit:
    """A ranked hit resolved to its source document and raw excerpt."""

    source_id: str
    segment_id: int
    title: str
    heading: str
    excerpt: str
    score: float

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "segment_id": self.segment_id,
            "title": self.title,
            "heading": self.heading,
            "excerpt": self.excerpt,
            "score": round(self.score, 6),
        }


def search(index: Index, text: str, top_k: int) -> list[SearchHit]:
    """Run :func:`query` and attach titles and raw segment text to each hit."""
    hits: list[SearchHit] = []
    for scored in query(index, text, top_k):
        doc = index.documents[scored.doc_id]
        seg = doc.segments[scored.segment_id]
        hits.append(SearchHit(
            source_id=doc.doc_id,
            segment_id=seg.segment_id,
            title=doc.title,
            heading=seg.heading,
            excerpt=doc.excerpt(seg.segment_id),
            score=scored.score,
        ))
    return hits
