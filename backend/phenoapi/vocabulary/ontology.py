"""Phenotype ontology (HPO-like) and disease annotations.

The ontology file is a JSON object ``{"terms": [...]}`` where each term has
``id``, ``name`` and optionally ``synonyms``, ``is_a`` and ``definition``.
The annotations file is ``{"diseases": [...]}``; each disease has ``id``,
``name``, optional ``synonyms`` and the list of phenotype term ids annotated
to it under ``phenotypes``.
"""
import json
import logging
import math
import re
from pathlib import Path

from phenoapi.config import settings
from phenoapi.models import VocabularyTerm

logger = logging.getLogger(__name__)

TERM_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*:[A-Za-z0-9_.\-]+$")


def is_term_id(value: str) -> bool:
    """True if ``value`` looks like ``<ontology prefix>:<code>``."""
    return bool(value) and TERM_ID_RE.match(value) is not None


class Vocabulary:
    def __init__(self):
        self.terms: dict[str, VocabularyTerm] = {}
        self.diseases: dict[str, VocabularyTerm] = {}
        self.annotations: dict[str, frozenset[str]] = {}  # disease id -> phenotype ids
        self._ancestors: dict[str, frozenset[str]] = {}
        self._ic: dict[str, float] = {}

    def build(self, terms: list[dict], diseases: list[dict]):
        """Build the term graph, disease annotations and information content."""
        self.terms = {}
        self._ancestors = {}
        for t in terms:
            term = VocabularyTerm(**t)
            self.terms[term.id] = term

        self.diseases = {}
        self.annotations = {}
        for d in diseases:
            phenotypes = d.get("phenotypes", [])
            known = [p for p in phenotypes if p in self.terms]
            if len(known) < len(phenotypes):
                logger.debug(f"Disease {d['id']}: dropped {len(phenotypes) - len(known)} unknown annotations")
            self.diseases[d["id"]] = VocabularyTerm(
                id=d["id"],
                name=d.get("name", d["id"]),
                synonyms=d.get("synonyms", []),
                definition=d.get("definition"),
            )
            self.annotations[d["id"]] = frozenset(known)

        self._compute_information_content()
        logger.info(f"Vocabulary built: {len(self.terms)} terms, {len(self.diseases)} diseases")

    def _compute_information_content(self):
        counts: dict[str, int] = {}
        for phenotypes in self.annotations.values():
            closure: set[str] = set()
            for p in phenotypes:
                closure |= self.ancestors(p)
            for t in closure:
                counts[t] = counts.get(t, 0) + 1
        total = len(self.annotations)
        self._ic = {t: -math.log(c / total) for t, c in counts.items()} if total else {}

    def load(self, vocabulary_file: Path | None = None, annotations_file: Path | None = None) -> bool:
        """Load ontology and annotations from disk."""
        vocabulary_file = vocabulary_file or settings.vocabulary_file
        annotations_file = annotations_file or settings.annotations_file
        if not vocabulary_file.exists():
            return False
        with open(vocabulary_file, encoding="utf-8") as f:
            terms = json.load(f).get("terms", [])
        diseases: list[dict] = []
        if annotations_file.exists():
            with open(annotations_file, encoding="utf-8") as f:
                diseases = json.load(f).get("diseases", [])
        else:
            logger.warning(f"Annotations file not found at {annotations_file}; no diagnoses can be suggested.")
        self.build(terms, diseases)
        return True

    def is_ready(self) -> bool:
        return bool(self.terms)

    def ancestors(self, term_id: str) -> frozenset[str]:
        """The term itself plus every term reachable through is-a links."""
        cached = self._ancestors.get(term_id)
        if cached is not None:
            return cached
        seen: set[str] = set()
        stack = [term_id]
        while stack:
            current = stack.pop()
            if current in seen or current not in self.terms:
                continue
            seen.add(current)
            stack.extend(self.terms[current].is_a)
        result = frozenset(seen)
        self._ancestors[term_id] = result
        return result

    def information_content(self, term_id: str) -> float:
        return self._ic.get(term_id, 0.0)


_vocabulary: Vocabulary | None = None

def get_vocabulary() -> Vocabulary:
    """Get singleton Vocabulary instance, loading from disk if needed."""
    global _vocabulary
    if _vocabulary is None:
        _vocabulary = Vocabulary()
        if not _vocabulary.load():
            logger.warning(f"Vocabulary not found at {settings.vocabulary_file}.")
    return _vocabulary
