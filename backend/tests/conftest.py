from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from phenoapi.diagnosis.ranker import AnnotationRanker
from phenoapi.diagnosis.script import DiagnosisScriptService
from phenoapi.diagnosis.service import DiagnosisService
from phenoapi.main import create_app
from phenoapi.records.service import PatientAccessService
from phenoapi.records.store import PatientStore
from phenoapi.vocabulary.bm25 import BM25Index, label_documents
from phenoapi.vocabulary.matcher import TermMatcher
from phenoapi.vocabulary.ontology import Vocabulary


@pytest.fixture(scope="session")
def data_dir() -> Path:
    """
    Path to `tests/data/` folder.
    """
    return Path(__file__).parent / "data"


@pytest.fixture(scope="session")
def vocabulary(data_dir: Path) -> Vocabulary:
    vocabulary = Vocabulary()
    assert vocabulary.load(data_dir / "hpo.json", data_dir / "annotations.json")
    return vocabulary


@pytest.fixture(scope="session")
def bm25_index(vocabulary: Vocabulary) -> BM25Index:
    index = BM25Index()
    index.build(label_documents(vocabulary))
    return index


@pytest.fixture(scope="session")
def matcher(vocabulary: Vocabulary, bm25_index: BM25Index) -> TermMatcher:
    return TermMatcher(vocabulary, bm25_index)


@pytest.fixture(scope="session")
def diagnosis_service(vocabulary: Vocabulary, matcher: TermMatcher) -> DiagnosisService:
    return DiagnosisService(vocabulary, matcher, AnnotationRanker(vocabulary))


@pytest.fixture
def store(data_dir: Path) -> PatientStore:
    """Fresh store per test; no consents file, so the default catalogue is used."""
    return PatientStore.load(data_dir / "patients.json", data_dir / "no_such_consents.json")


@pytest.fixture
def access_service(store: PatientStore) -> PatientAccessService:
    return PatientAccessService(store)


@pytest.fixture
def client(access_service: PatientAccessService, diagnosis_service: DiagnosisService) -> TestClient:
    app = create_app(access_service, DiagnosisScriptService(diagnosis_service))
    return TestClient(app)
