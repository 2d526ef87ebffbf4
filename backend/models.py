from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, Dict, List, Any, Union
from datetime import datetime

import config
from medication_entries import MedicationChangeEntry, VALID_STATUSES


class SafetyCheckOptions(BaseModel):
    """Options for a single safety evaluation"""
    use_ai: Optional[bool] = None  # None -> config.ENABLE_AI_SAFETY_CHECKS
    exclude_medication_id: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def ai_enabled(self) -> bool:
        return config.ENABLE_AI_SAFETY_CHECKS if self.use_ai is None else self.use_ai


# Medication change entries as produced by the extraction pipeline
class MedicationChangeEntryIn(BaseModel):
    name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    note: Optional[str] = None
    display: Optional[str] = None
    original: Optional[str] = None
    needs_confirmation: Optional[bool] = Field(None, alias="needsConfirmation")
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    @field_validator("status")
    @classmethod
    def _known_status(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.lower()
        return value if value in VALID_STATUSES else None

    def to_entry(self) -> MedicationChangeEntry:
        return MedicationChangeEntry(
            name=self.name,
            dose=self.dose or None,
            frequency=self.frequency or None,
            note=self.note or None,
            display=self.display or None,
            original=self.original or None,
            needs_confirmation=self.needs_confirmation,
            status=self.status,
        )


# Legacy payloads send plain strings instead of entry objects
MedicationEntryValue = Union[MedicationChangeEntryIn, str]


class MedicationChangeSummary(BaseModel):
    started: List[MedicationEntryValue] = []
    stopped: List[MedicationEntryValue] = []
    changed: List[MedicationEntryValue] = []

    def to_raw(self) -> Dict[str, List[Any]]:
        """Plain dict/str lists for the entry normalizer."""
        return {
            key: [
                item if isinstance(item, str) else item.model_dump(exclude_none=True)
                for item in getattr(self, key)
            ]
            for key in ("started", "stopped", "changed")
        }


class MedicationSyncRequest(BaseModel):
    patient_id: int = Field(..., alias="patientId")
    visit_id: Optional[Union[int, str]] = Field(None, alias="visitId")
    medications: MedicationChangeSummary = MedicationChangeSummary()
    processed_at: Optional[datetime] = Field(None, alias="processedAt")

    model_config = ConfigDict(populate_by_name=True)


class MedicationSyncResult(BaseModel):
    patient_id: int
    visit_id: Optional[Union[int, str]] = None
    started: int = 0
    stopped: int = 0
    changed: int = 0
    created: int = 0
    updated: int = 0
    medication_ids: List[int] = []
    warnings_by_medication: Dict[str, List[Dict[str, Any]]] = {}


class SafetyWarningResponse(BaseModel):
    type: str
    severity: str
    message: str
    details: str
    recommendation: str
    conflicting_medication: Optional[str] = None
    allergen: Optional[str] = None
    source: str = "hardcoded"
    external_ids: Optional[Dict[str, Any]] = None


class MedicationResponse(BaseModel):
    id: int
    patient_id: int
    name: str
    canonical_name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    active: bool
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    changed_at: Optional[datetime] = None
    needs_confirmation: bool = False
    medication_status: Optional[str] = None
    medication_warning: Optional[List[SafetyWarningResponse]] = None
    last_safety_check_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SafetyRecheckResult(BaseModel):
    medication_id: int
    skipped: bool = False
    reason: Optional[str] = None
    warning_count: int = 0
    needs_confirmation: bool = False


class BackfillResult(BaseModel):
    scanned: int = 0
    updated: int = 0
    batches: int = 0
    failed_batches: int = 0
