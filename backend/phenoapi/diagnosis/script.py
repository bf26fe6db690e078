"""In-process entry point for scripts that need diagnosis suggestions."""
from phenoapi.diagnosis.service import DiagnosisService
from phenoapi.models import VocabularyTerm


class DiagnosisScriptService:
    def __init__(self, service: DiagnosisService):
        self.service = service

    def get(self, phenotypes: list[str], nonstandard_phenotypes: list[str], limit: int) -> list[VocabularyTerm]:
        """
        Get a list of plausible diagnoses given a list of present phenotypes.

        Args:
            phenotypes: term ids observed in the patient, as ``<ontology prefix>:<term id>``,
                for example ``HP:0002066``
            nonstandard_phenotypes: free-text phenotypes observed in the patient
            limit: the maximum number of diagnoses to return; must be positive

        Returns:
            Suggested diagnoses, most plausible first
        """
        return self.service.get_diagnosis(phenotypes, nonstandard_phenotypes, limit)
