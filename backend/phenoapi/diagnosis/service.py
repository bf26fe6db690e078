"""Orchestrates: validate terms → match free text → rank → truncate."""
import logging
from collections.abc import Sequence

from phenoapi.diagnosis.ranker import AnnotationRanker, DiagnosisRanker
from phenoapi.models import DiagnosisCandidate
from phenoapi.vocabulary.matcher import TermMatcher, build_matcher
from phenoapi.vocabulary.ontology import Vocabulary, get_vocabulary, is_term_id

logger = logging.getLogger(__name__)


class DiagnosisService:
    """Suggests diagnoses from observed phenotypes. Stateless and read-only."""

    def __init__(self, vocabulary: Vocabulary, matcher: TermMatcher, ranker: DiagnosisRanker):
        self.vocabulary = vocabulary
        self.matcher = matcher
        self.ranker = ranker

    def is_ready(self) -> bool:
        return self.vocabulary.is_ready()

    def collect_terms(self, phenotypes: Sequence[str], nonstandard_phenotypes: Sequence[str]) -> frozenset[str]:
        """Known standard term ids plus the best match of each free-text phenotype."""
        terms: set[str] = set()
        for term_id in phenotypes or ():
            term_id = (term_id or "").strip()
            if term_id in self.vocabulary.terms:
                terms.add(term_id)
            elif not is_term_id(term_id):
                logger.debug(f"Ignoring malformed phenotype id {term_id!r}")
            else:
                logger.debug(f"Ignoring unknown phenotype term {term_id!r}")
        for text in nonstandard_phenotypes or ():
            match = self.matcher.resolve(text)
            if match is not None:
                logger.debug(f"Free-text phenotype {text!r} matched {match}")
                terms.add(match)
        return frozenset(terms)

    def get_diagnosis(
        self,
        phenotypes: Sequence[str],
        nonstandard_phenotypes: Sequence[str],
        limit: int,
    ) -> list[DiagnosisCandidate]:
        if limit <= 0:
            return []
        terms = self.collect_terms(phenotypes, nonstandard_phenotypes)
        if not terms:
            return []

        results: list[DiagnosisCandidate] = []
        seen: set[str] = set()
        for candidate in self.ranker.rank(terms):
            if candidate.id in seen:
                continue
            seen.add(candidate.id)
            results.append(candidate)
            if len(results) >= limit:
                break
        logger.info(f"Suggested {len(results)} diagnoses from {len(terms)} phenotypes (limit={limit})")
        return results


def build_diagnosis_service(vocabulary: Vocabulary | None = None) -> DiagnosisService:
    """Wire the default service: on-disk vocabulary, label matcher, annotation ranker."""
    vocabulary = vocabulary or get_vocabulary()
    return DiagnosisService(vocabulary, build_matcher(vocabulary), AnnotationRanker(vocabulary))
