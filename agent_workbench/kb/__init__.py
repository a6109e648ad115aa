"""
Local documentation search — document store, inverted index, TF-IDF query
engine and the generation handle that serves queries while rebuilding.
"""

from .generation import Generation, IndexHandle, IndexNotReady
from .index import Index, Posting, build_index
from .query import ScoredSegment, SearchHit, query, search
from .store import CorpusUnavailable, Document, LoadedCorpus, Segment, load_corpus
from .tokenizer import STOP_WORDS, tokenize

__all__ = [
    "CorpusUnavailable", "Document", "LoadedCorpus", "Segment", "load_corpus",
    "STOP_WORDS", "tokenize",
    "Index", "Posting", "build_index",
    "ScoredSegment", "SearchHit", "query", "search",
    "Generation", "IndexHandle", "IndexNotReady",
]
