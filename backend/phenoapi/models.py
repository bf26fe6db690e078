from pydantic import BaseModel, Field
from typing import Optional


class VocabularyTerm(BaseModel):
    id: str
    name: str
    synonyms: list[str] = Field(default_factory=list)
    is_a: list[str] = Field(default_factory=list)
    definition: Optional[str] = None


class DiagnosisCandidate(VocabularyTerm):
    score: float
    phenotypes: list[str] = Field(default_factory=list)


class SuggestResponse(BaseModel):
    diagnoses: list[DiagnosisCandidate]


class UserSummary(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    type: str = "user"


class OwnerUpdate(BaseModel):
    id: str


class Consent(BaseModel):
    id: str
    label: str
    description: str = ""
    is_required: bool = False
    affected_fields: list[str] = Field(default_factory=list)
    status: str = "no"


class StatusMessage(BaseModel):
    status: str = "ok"
    message: str
