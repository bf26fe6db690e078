"""
index_vocabulary.py — Build the label indexes used to match free-text
phenotypes against the vocabulary. Run from the backend/ directory:

    python scripts/index_vocabulary.py [--vocabulary data/hpo.json] [--dense]

The BM25 index is always built. --dense additionally embeds every label with
sentence-transformers and stores a FAISS index (set PHENOAPI_DENSE_MATCHING=true
to use it at runtime).
"""

import argparse
import logging
import sys
from pathlib import Path

# Allow imports from backend/
sys.path.insert(0, str(Path(__file__).parent.parent))

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--vocabulary", default=None, help="Ontology JSON file")
    parser.add_argument("--annotations", default=None, help="Disease annotations JSON file")
    parser.add_argument("--dense", action="store_true", help="Also build the FAISS label index")
    parser.add_argument("--model", default=None, help="Sentence-transformers model (default: settings.embed_model)")
    args = parser.parse_args()

    from phenoapi.config import settings
    from phenoapi.vocabulary.bm25 import BM25Index, label_documents
    from phenoapi.vocabulary.ontology import Vocabulary

    vocabulary_file = Path(args.vocabulary) if args.vocabulary else settings.vocabulary_file
    annotations_file = Path(args.annotations) if args.annotations else settings.annotations_file

    vocabulary = Vocabulary()
    if not vocabulary.load(vocabulary_file, annotations_file):
        logger.error(f"Vocabulary file not found: {vocabulary_file}")
        sys.exit(1)

    docs = label_documents(vocabulary)
    if not docs:
        logger.error("Vocabulary has no labels to index.")
        sys.exit(1)
    logger.info(f"Total labels: {len(docs)}")

    logger.info("Building BM25 index...")
    bm25 = BM25Index()
    bm25.build(docs)
    bm25.save()

    if args.dense:
        from phenoapi.vocabulary.embedder import LabelEmbedder
        from phenoapi.vocabulary.vectorstore import LabelVectorStore

        logger.info("Embedding labels (may take several minutes on CPU)...")
        vs = LabelVectorStore()
        vs.build(docs, LabelEmbedder(args.model))
        vs.save()

    logger.info(f"✅ Indexing complete! Indexes saved to {settings.index_dir}")
    for f in settings.index_dir.iterdir():
        size_mb = f.stat().st_size / 1024 / 1024
        logger.info(f"   {f.name} ({size_mb:.1f} MB)")


if __name__ == "__main__":
    main()
