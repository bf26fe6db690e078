"""FAISS index of label embeddings, one vector per (term, label) document."""
import logging
import pickle

import faiss
import numpy as np

from phenoapi.config import settings

logger = logging.getLogger(__name__)

INDEX_FILE = "labels_faiss.index"
DOCS_FILE = "labels_metadata.pkl"


class LabelVectorStore:
    def __init__(self):
        self.index = None
        self.docs: list[dict] = []  # parallel to the FAISS vectors

    def build(self, docs: list[dict], embedder) -> None:
        """Embed every label document with ``embedder`` and index the vectors."""
        embeddings = embedder.encode_labels(docs)
        self.index = faiss.IndexFlatIP(embeddings.shape[1])
        self.index.add(embeddings)
        self.docs = docs
        terms = len({d["term_id"] for d in docs})
        logger.info(f"FAISS label index built: {self.index.ntotal} labels for {terms} terms")

    def save(self):
        settings.index_dir.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(settings.index_dir / INDEX_FILE))
        with open(settings.index_dir / DOCS_FILE, "wb") as f:
            pickle.dump(self.docs, f)
        logger.info(f"FAISS label index saved → {settings.index_dir}")

    def load(self) -> bool:
        index_path = settings.index_dir / INDEX_FILE
        docs_path = settings.index_dir / DOCS_FILE
        if not index_path.exists() or not docs_path.exists():
            return False
        self.index = faiss.read_index(str(index_path))
        with open(docs_path, "rb") as f:
            self.docs = pickle.load(f)
        logger.info(f"FAISS label index loaded: {self.index.ntotal} labels")
        return True

    def search(self, query_embedding: np.ndarray, top_k: int) -> list[dict]:
        """Best label per term, up to top_k terms, with 'dense_score' and 'dense_rank'."""
        if self.index is None:
            raise RuntimeError("FAISS label index not loaded. Call load() first.")
        query = query_embedding.reshape(1, -1).astype("float32")
        # A term owns several labels; over-fetch so dedup still yields top_k terms
        scores, indices = self.index.search(query, min(top_k * 4, self.index.ntotal))
        best: dict[str, dict] = {}
        for score, idx in zip(scores[0], indices[0]):
            if idx < 0:
                continue
            doc = self.docs[idx]
            if doc["term_id"] not in best:
                best[doc["term_id"]] = {**doc, "dense_score": float(score)}
        ranked = list(best.values())[:top_k]
        for rank, match in enumerate(ranked):
            match["dense_rank"] = rank
        return ranked
