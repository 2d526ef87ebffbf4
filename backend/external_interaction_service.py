"""
External Drug Interaction Service

Checks a new medication against the patient's current medications using the
NLM RxNav API:
- approximateTerm.json resolves a drug name to an RxCUI
- interaction/list.json returns interaction pairs among a set of RxCUIs

Results are cached per patient in medication_safety_cache (source "external")
keyed by the sorted RxCUI set. Every failure degrades to an empty result.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

import config
from database import SessionLocal
from medication_canonicalizer import NameCanonicalizer, default_canonicalizer
from medication_entries import MedicationChangeEntry
from medication_repository import SafetyResultCache
from medication_safety_rules import (
    DISCUSS_RECOMMENDATION,
    SafetyWarning,
    SeverityLevel,
    WarningSource,
    WarningType,
    warnings_from_dicts,
    warnings_to_dicts,
)
from structured_logging import log_safety_decision

logger = logging.getLogger(__name__)

EXTERNAL_CACHE_SOURCE = "external"


@dataclass
class ExternalInteraction:
    """One interaction pair as reported by RxNav"""
    id1: Optional[str]
    id2: Optional[str]
    name1: Optional[str] = None
    name2: Optional[str] = None
    severity: Optional[str] = None
    description: Optional[str] = None


def map_external_severity(value: Optional[str]) -> SeverityLevel:
    normalized = (value or "").lower()
    if "high" in normalized:
        return SeverityLevel.HIGH
    if "moderate" in normalized:
        return SeverityLevel.MODERATE
    if "low" in normalized:
        return SeverityLevel.LOW
    return SeverityLevel.MODERATE


def build_external_cache_key(new_id: str, current_ids: Iterable[str]) -> str:
    data = "|".join([new_id, *sorted(current_ids)])
    return hashlib.md5(data.encode("utf-8")).hexdigest()


def parse_interaction_list(data: Dict[str, Any]) -> List[ExternalInteraction]:
    """Flatten interactionTypeGroup -> interactionType -> interactionPair."""
    interactions = []
    for group in (data or {}).get("interactionTypeGroup") or []:
        for interaction_type in group.get("interactionType") or []:
            for pair in interaction_type.get("interactionPair") or []:
                concepts = pair.get("interactionConcept") or []
                first = (concepts[0].get("minConceptItem") or {}) if len(concepts) > 0 else {}
                second = (concepts[1].get("minConceptItem") or {}) if len(concepts) > 1 else {}
                interactions.append(ExternalInteraction(
                    id1=first.get("rxcui"),
                    id2=second.get("rxcui"),
                    name1=first.get("name"),
                    name2=second.get("name"),
                    severity=pair.get("severity"),
                    description=pair.get("description"),
                ))
    return interactions


def filter_interactions_for_new_medication(
    interactions: Sequence[ExternalInteraction],
    new_id: str,
    current_ids: Iterable[str],
) -> List[ExternalInteraction]:
    """Keep pairs involving the new drug and a current drug, not pairs among current drugs only."""
    current = set(current_ids)
    relevant = []
    for interaction in interactions:
        if not interaction.id1 or not interaction.id2:
            continue
        involves_new = new_id in (interaction.id1, interaction.id2)
        involves_current = interaction.id1 in current or interaction.id2 in current
        if involves_new and involves_current:
            relevant.append(interaction)
    return relevant


def interaction_to_warning(interaction: ExternalInteraction, new_id: str) -> SafetyWarning:
    other_name = interaction.name2 if interaction.id1 == new_id else interaction.name1
    return SafetyWarning(
        type=WarningType.DRUG_INTERACTION,
        severity=map_external_severity(interaction.severity),
        message="External interaction detected",
        details=interaction.description or "External interaction detected.",
        recommendation=DISCUSS_RECOMMENDATION,
        conflicting_medication=other_name or None,
        source=WarningSource.EXTERNAL,
        external_ids={"rxcui_pair": [i for i in (interaction.id1, interaction.id2) if i]},
    )


class RxNavClient:
    """Thin async client for the two RxNav endpoints the safety check needs"""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        canonicalizer: NameCanonicalizer = default_canonicalizer,
    ):
        self.base_url = (base_url or config.EXTERNAL_DRUG_DATA_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.EXTERNAL_DRUG_DATA_TIMEOUT_SECONDS
        self.transport = transport
        self.canonicalizer = canonicalizer

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def resolve_approximate_identifier(self, name: str) -> Optional[str]:
        """Best RxCUI for a drug name, or None."""
        term = self.canonicalizer.canonicalize(name)
        if not term:
            return None

        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/approximateTerm.json",
                params={"term": term, "maxEntries": 1, "option": 1},
            )
            response.raise_for_status()
            data = response.json()

        candidates = ((data or {}).get("approximateGroup") or {}).get("candidate") or []
        if not candidates:
            return None
        return candidates[0].get("rxcui") or None

    async def fetch_interactions(self, identifiers: Sequence[str]) -> List[ExternalInteraction]:
        async with self._client() as client:
            response = await client.get(
                f"{self.base_url}/interaction/list.json",
                params={"rxcuis": " ".join(identifiers)},
            )
            response.raise_for_status()
            return parse_interaction_list(response.json())


class ExternalInteractionCache(SafetyResultCache):
    """Persisted external lookup results, one row per (patient, RxCUI-set fingerprint)"""

    def __init__(self, session_factory=SessionLocal, ttl=None):
        super().__init__(EXTERNAL_CACHE_SOURCE, session_factory=session_factory, ttl=ttl)


class ExternalInteractionLookup:
    """
    Read-through external interaction check.

    Invoked by the recheck jobs, not inline in the visit sync.
    """

    def __init__(
        self,
        client: Optional[RxNavClient] = None,
        cache: Optional[ExternalInteractionCache] = None,
        enabled: Optional[bool] = None,
    ):
        self.client = client or RxNavClient()
        self.cache = cache or ExternalInteractionCache()
        self.enabled = config.EXTERNAL_DRUG_DATA_ENABLED if enabled is None else enabled

    async def check(
        self,
        patient_id: int,
        entry: MedicationChangeEntry,
        current_medications: Sequence[Any],
    ) -> List[SafetyWarning]:
        if not self.enabled:
            return []

        try:
            return await self._check(patient_id, entry, current_medications)
        except Exception as e:
            logger.error(f"External safety checks failed: {e}", exc_info=True,
                         extra={"medication": entry.name})
            return []

    async def _check(
        self,
        patient_id: int,
        entry: MedicationChangeEntry,
        current_medications: Sequence[Any],
    ) -> List[SafetyWarning]:
        new_id = await self.client.resolve_approximate_identifier(entry.name)
        if not new_id:
            return []

        resolved = await asyncio.gather(*[
            self.client.resolve_approximate_identifier(med.name) for med in current_medications
        ], return_exceptions=True)

        current_ids = []
        for med, value in zip(current_medications, resolved):
            if isinstance(value, Exception):
                logger.warning(f"Could not resolve {med.name} for external check: {value}")
            elif value:
                current_ids.append(value)
        if not current_ids:
            return []

        cache_key = build_external_cache_key(new_id, current_ids)
        cached = self.cache.get(patient_id, cache_key)
        if cached is not None:
            return warnings_from_dicts(cached)

        interactions = await self.client.fetch_interactions([new_id, *current_ids])
        relevant = filter_interactions_for_new_medication(interactions, new_id, current_ids)
        warnings = [interaction_to_warning(interaction, new_id) for interaction in relevant]

        self.cache.put(patient_id, cache_key, warnings_to_dicts(warnings), metadata={
            "new_rxcui": new_id,
            "current_rxcuis": current_ids,
        })

        log_safety_decision(logger, entry.name, warnings, layer=EXTERNAL_CACHE_SOURCE)
        return warnings
