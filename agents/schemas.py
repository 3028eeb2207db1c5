from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_ALTERNATIVES = 5


class ValidationStatus(str, Enum):
    """Outcome tier of matching one field against master data."""

    EXACT = "exact"
    FUZZY_HIGH = "fuzzy_high"
    FUZZY_MEDIUM = "fuzzy_medium"
    FUZZY_LOW = "fuzzy_low"
    NO_MATCH = "no_match"


class MasterDataItem(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str
    name: str
    description: Optional[str] = None


class MatchAlternative(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    score: int = Field(..., ge=0, le=100)


class OracleSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    confidence: int = Field(..., ge=0, le=100)


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    field: str
    extracted_value: str = ""
    matched_code: Optional[str] = None
    matched_name: Optional[str] = None
    confidence: int = Field(0, ge=0, le=100)
    status: ValidationStatus = ValidationStatus.NO_MATCH
    alternatives: List[MatchAlternative] = Field(default_factory=list, max_length=MAX_ALTERNATIVES)

    @property
    def is_matched(self) -> bool:
        return self.status != ValidationStatus.NO_MATCH

    def to_record(self) -> dict:
        """Flat representation keyed like the ``field_validations`` table."""

        return {
            "field_name": self.field,
            "extracted_value": self.extracted_value,
            "matched_code": self.matched_code,
            "matched_name": self.matched_name,
            "confidence": self.confidence,
            "validation_status": self.status.value,
            "alternative_matches": [alt.model_dump() for alt in self.alternatives],
        }
