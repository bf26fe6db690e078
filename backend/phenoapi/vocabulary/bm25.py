"""BM25 sparse index over vocabulary term labels and synonyms."""
import logging
import pickle
import re

import numpy as np
from rank_bm25 import BM25Okapi

from phenoapi.config import settings
from phenoapi.vocabulary.ontology import Vocabulary

logger = logging.getLogger(__name__)


def _tokenize(text: str) -> list[str]:
    """Simple whitespace + lowercase tokenizer; keeps term ids intact."""
    text = text.lower()
    tokens = re.split(r"[\s/\-]+", text)
    # Remove pure punctuation tokens
    return [t.strip(".,;:!?()[]'\"") for t in tokens if t.strip(".,;:!?()[]'\"")]


def label_documents(vocabulary: Vocabulary) -> list[dict]:
    """One document per (term, label) pair: the name and each synonym."""
    docs: list[dict] = []
    for term_id in sorted(vocabulary.terms):
        term = vocabulary.terms[term_id]
        for label in [term.name, *term.synonyms]:
            if label:
                docs.append({"term_id": term_id, "label": label})
    return docs


class BM25Index:
    def __init__(self):
        self.bm25 = None
        self.docs: list[dict] = []  # parallel to BM25 corpus

    def build(self, docs: list[dict]):
        """Build BM25 index from label documents."""
        self.docs = docs
        if not docs:
            self.bm25 = None
            logger.warning("BM25 index not built: no labels to index.")
            return
        self.bm25 = BM25Okapi([_tokenize(d["label"]) for d in docs])
        logger.info(f"BM25 index built: {len(docs)} labels")

    def save(self):
        """Save BM25 index to disk."""
        bm25_path = settings.index_dir / "labels_bm25.pkl"
        bm25_path.parent.mkdir(parents=True, exist_ok=True)
        with open(bm25_path, "wb") as f:
            pickle.dump({"bm25": self.bm25, "docs": self.docs}, f)
        logger.info(f"BM25 index saved → {bm25_path}")

    def load(self) -> bool:
        """Load BM25 index from disk."""
        bm25_path = settings.index_dir / "labels_bm25.pkl"
        if not bm25_path.exists():
            return False
        with open(bm25_path, "rb") as f:
            data = pickle.load(f)
        self.bm25 = data["bm25"]
        self.docs = data.get("docs", [])
        logger.info(f"BM25 index loaded: {len(self.docs)} labels")
        return True

    def search(self, query: str, top_k: int) -> list[dict]:
        """Return up to top_k distinct terms, best label match per term."""
        if self.bm25 is None:
            return []
        tokens = _tokenize(query)
        if not tokens:
            return []
        scores = self.bm25.get_scores(tokens)
        # Stable sort keeps label order for equal scores
        order = np.argsort(-scores, kind="stable")
        results: list[dict] = []
        seen: set[str] = set()
        for idx in order:
            if scores[idx] <= 0 or len(results) >= top_k:
                break
            doc = self.docs[idx]
            if doc["term_id"] in seen:
                continue
            seen.add(doc["term_id"])
            results.append({
                **doc,
                "sparse_score": float(scores[idx]),
                "sparse_rank": len(results),
            })
        return results
