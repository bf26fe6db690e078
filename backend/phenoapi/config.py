"""Central config loaded from environment variables."""
from pydantic_settings import BaseSettings
from pathlib import Path

BASE_DIR = Path(__file__).parent.parent  # backend/


class Settings(BaseSettings):
    # Paths
    index_dir: Path = BASE_DIR / "data" / "index"
    vocabulary_file: Path = BASE_DIR / "data" / "hpo.json"
    annotations_file: Path = BASE_DIR / "data" / "annotations.json"
    consents_file: Path = BASE_DIR / "data" / "consents.json"
    patients_file: Path = BASE_DIR / "data" / "patients.json"

    # Diagnosis suggestion
    default_limit: int = 10
    max_limit: int = 100

    # Free-text phenotype matching
    top_k: int = 5  # label matches considered per free-text phenotype
    min_match_score: float = 0.5  # BM25 score below which a match is ignored
    min_dense_score: float = 0.6  # cosine similarity below which a dense match is ignored
    rrf_k: int = 60  # RRF constant

    # Dense label matching (sentence-transformers + FAISS), off by default
    dense_matching: bool = False
    embed_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    # Persist owner/consent changes back to patients_file
    persist_patients: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "PHENOAPI_"


settings = Settings()
