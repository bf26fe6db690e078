"""Free-text phenotype matching: BM25 (sparse) optionally fused with FAISS (dense) via RRF."""
import logging

from phenoapi.config import settings
from phenoapi.vocabulary.bm25 import BM25Index, label_documents
from phenoapi.vocabulary.embedder import LabelEmbedder, get_embedder
from phenoapi.vocabulary.ontology import Vocabulary
from phenoapi.vocabulary.vectorstore import LabelVectorStore

logger = logging.getLogger(__name__)

RRF_K = 60  # RRF constant — standard value from the 2009 paper


def _rrf_score(rank: int, k: int = RRF_K) -> float:
    """Calculate Reciprocal Rank Fusion score."""
    return 1.0 / (k + rank + 1)


def reciprocal_rank_fusion(
    dense_results: list[dict],
    sparse_results: list[dict],
    top_k: int,
    k: int = RRF_K,
) -> list[dict]:
    """
    Merge two ranked lists of label matches using RRF.
    Deduplicates by term_id; scores from both lists are kept on the item.
    Returns top_k fused results sorted by descending RRF score, then term_id.
    """
    scores: dict[str, float] = {}
    items: dict[str, dict] = {}

    for rank, match in enumerate(dense_results):
        key = match["term_id"]
        scores[key] = scores.get(key, 0.0) + _rrf_score(rank, k)
        items[key] = dict(match)

    for rank, match in enumerate(sparse_results):
        key = match["term_id"]
        scores[key] = scores.get(key, 0.0) + _rrf_score(rank, k)
        items[key] = {**match, **items.get(key, {})}

    ranked = sorted(scores.items(), key=lambda x: (-x[1], x[0]))[:top_k]
    return [{**items[key], "rrf_score": s} for key, s in ranked]


class TermMatcher:
    """Maps free-text phenotype descriptions onto vocabulary terms."""

    def __init__(
        self,
        vocabulary: Vocabulary,
        bm25_index: BM25Index,
        vector_store: LabelVectorStore | None = None,
        embedder: LabelEmbedder | None = None,
    ):
        self.vocabulary = vocabulary
        self.bm25 = bm25_index
        self.vs = vector_store
        self.embedder = embedder
        self._exact: dict[str, str] = {}
        for doc in label_documents(vocabulary):
            self._exact.setdefault(doc["label"].strip().lower(), doc["term_id"])

    @property
    def dense_enabled(self) -> bool:
        return self.vs is not None and self.vs.index is not None and self.embedder is not None

    def search(self, text: str, k: int) -> list[dict]:
        """Ranked label matches for ``text``; hybrid when a dense index is present."""
        sparse_results = self.bm25.search(text, top_k=k)
        if not self.dense_enabled:
            return sparse_results
        dense_results = self.vs.search(self.embedder.encode_query(text), top_k=k)
        fused = reciprocal_rank_fusion(dense_results, sparse_results, top_k=k, k=settings.rrf_k)
        logger.debug(f"Hybrid match: {len(dense_results)} dense + {len(sparse_results)} sparse → {len(fused)} fused")
        return fused

    def resolve(self, text: str) -> str | None:
        """Best vocabulary term id for a free-text phenotype, or None."""
        text = (text or "").strip()
        if not text:
            return None
        if text in self.vocabulary.terms:
            return text
        exact = self._exact.get(text.lower())
        if exact is not None:
            return exact

        for match in self.search(text, k=settings.top_k):
            if match["term_id"] not in self.vocabulary.terms:
                continue
            if match.get("sparse_score", 0.0) >= settings.min_match_score:
                return match["term_id"]
            if match.get("dense_score", 0.0) >= settings.min_dense_score:
                return match["term_id"]
        logger.debug(f"No vocabulary match for free-text phenotype {text!r}")
        return None


def build_matcher(vocabulary: Vocabulary) -> TermMatcher:
    """Build a matcher, reusing pre-built indexes only if they cover exactly this vocabulary's labels."""
    docs = label_documents(vocabulary)
    bm25 = BM25Index()
    if bm25.load() and bm25.docs != docs:
        logger.warning("BM25 label index is stale for the loaded vocabulary; rebuilding in memory.")
        bm25 = BM25Index()
    if bm25.bm25 is None:
        bm25.build(docs)

    vs = embedder = None
    if settings.dense_matching:
        vs = LabelVectorStore()
        if not vs.load():
            logger.warning("Dense matching enabled but FAISS label index not found. Run scripts/index_vocabulary.py.")
            vs = None
        elif vs.docs != docs:
            logger.warning("FAISS label index is stale for the loaded vocabulary; dense matching disabled.")
            vs = None
        else:
            embedder = get_embedder()
    return TermMatcher(vocabulary, bm25, vs, embedder)
