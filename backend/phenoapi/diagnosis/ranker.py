"""Diagnosis ranking engines."""
import logging
from typing import Protocol, runtime_checkable

from phenoapi.models import DiagnosisCandidate
from phenoapi.vocabulary.ontology import Vocabulary

logger = logging.getLogger(__name__)


@runtime_checkable
class DiagnosisRanker(Protocol):
    """Anything that can rank diseases against a set of phenotype term ids."""

    def rank(self, phenotypes: frozenset[str]) -> list[DiagnosisCandidate]:
        """Return every plausible candidate, most plausible first."""
        ...


class AnnotationRanker:
    """
    Scores diseases by semantic similarity between the query phenotypes and
    each disease's annotated phenotypes.

    For every query term the best shared ancestor (highest information
    content) with any of the disease's annotations counts towards the disease
    score; the score is the mean over query terms. Diseases sharing nothing
    more informative than the ontology root are not candidates.
    """

    def __init__(self, vocabulary: Vocabulary):
        self.vocabulary = vocabulary
        self._closures: dict[str, frozenset[str]] = {}

    def _closure(self, disease_id: str) -> frozenset[str]:
        closure = self._closures.get(disease_id)
        if closure is None:
            terms: set[str] = set()
            for p in self.vocabulary.annotations.get(disease_id, ()):
                terms |= self.vocabulary.ancestors(p)
            closure = frozenset(terms)
            self._closures[disease_id] = closure
        return closure

    def score(self, phenotypes: frozenset[str], disease_id: str) -> float:
        if not phenotypes:
            return 0.0
        closure = self._closure(disease_id)
        total = 0.0
        for q in phenotypes:
            shared = self.vocabulary.ancestors(q) & closure
            if shared:
                total += max(self.vocabulary.information_content(t) for t in shared)
        return total / len(phenotypes)

    def rank(self, phenotypes: frozenset[str]) -> list[DiagnosisCandidate]:
        scored: list[tuple[float, str]] = []
        for disease_id in self.vocabulary.diseases:
            s = round(self.score(phenotypes, disease_id), 6)
            if s > 0:
                scored.append((s, disease_id))
        scored.sort(key=lambda x: (-x[0], x[1]))
        logger.debug(f"Ranked {len(scored)} candidate diagnoses for {len(phenotypes)} phenotypes")

        return [
            DiagnosisCandidate(
                **self.vocabulary.diseases[disease_id].model_dump(),
                score=s,
                phenotypes=sorted(self.vocabulary.annotations[disease_id]),
            )
            for s, disease_id in scored
        ]
