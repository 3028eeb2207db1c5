"""Validate extracted invoice fields against a client's ERP master data.

For every list-match field (vendor, GL account, cost center, tax code, ...)
the extracted value is resolved to a master data code in tiers:

1. exact, case-insensitive match on an item's code or name (confidence 100);
2. fuzzy match on item names scoring above 85 is accepted directly;
3. a best score in (60, 85] is handed to a disambiguation oracle together
   with the top candidates and a snapshot of the document context;
4. anything else is reported as ``no_match`` with the best candidates
   attached for manual review.

Collaborator failures never leave this module: an unreachable master data
store counts as an empty code list and a failing oracle as "no selection".
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from agents.schemas import (
    MAX_ALTERNATIVES,
    MasterDataItem,
    MatchAlternative,
    OracleSelection,
    ValidationResult,
    ValidationStatus,
)
from config.settings import settings
from services.disambiguation_oracle import DisambiguationOracle
from services.master_data_provider import MasterDataProvider, coerce_master_data_items
from utils.field_catalog import FieldCatalog
from utils.similarity import similarity

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 100
AUTO_ACCEPT_THRESHOLD = 85
HIGH_CONFIDENCE_THRESHOLD = 90
ESCALATION_THRESHOLD = 60
ORACLE_MEDIUM_THRESHOLD = 75

FUZZY_CANDIDATE_LIMIT = 20
ORACLE_CANDIDATE_LIMIT = 10

# document context field -> extracted fields consulted, first non-empty wins
DOCUMENT_CONTEXT_FIELDS: Dict[str, Sequence[str]] = {
    "vendor": ("invoicing_party", "vendor_name"),
    "amount": ("invoice_gross_amount",),
    "date": ("document_date",),
    "description": ("document_header_text",),
}


def _unwrap(value: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("value")
    return value


def _raw_value(value: Any) -> str:
    value = _unwrap(value)
    if value is None:
        return ""
    return str(value)


def build_document_context(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Snapshot of the extracted fields the oracle may use as context."""

    context: Dict[str, Any] = {}
    for key, sources in DOCUMENT_CONTEXT_FIELDS.items():
        value = None
        for source in sources:
            candidate = _unwrap(fields.get(source))
            if candidate:
                value = candidate
                break
        context[key] = value
    return context


class FieldValidationService:
    """Tiered matching of extracted values against master data code lists."""

    def __init__(
        self,
        master_data_provider: MasterDataProvider,
        disambiguation_oracle: Optional[DisambiguationOracle] = None,
        *,
        field_catalog: Optional[FieldCatalog] = None,
        scorer: Callable[[str, str], int] = similarity,
        max_workers: Optional[int] = None,
    ) -> None:
        self._provider = master_data_provider
        self._oracle = disambiguation_oracle
        self._catalog = field_catalog or FieldCatalog.load(settings.field_catalog_dataset)
        self._scorer = scorer
        self._max_workers = max(1, int(max_workers or settings.validation_max_workers))

    @property
    def field_catalog(self) -> FieldCatalog:
        return self._catalog

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def validate(
        self,
        value: Any,
        field_name: str,
        client_id: str,
        document_context: Optional[Dict[str, Any]] = None,
    ) -> ValidationResult:
        """Resolve one extracted value to a master data item."""

        raw = _raw_value(value)
        # surrounding whitespace is ignored for matching but kept in the result
        extracted = raw.strip()
        if not extracted:
            return ValidationResult(field=field_name)

        category = self._catalog.category_for(field_name)
        items = self._fetch_master_data(client_id, category)
        if not items:
            logger.info("No %s master data for client %s; %s unmatched", category, client_id, field_name)
            return ValidationResult(field=field_name, extracted_value=raw)

        exact = self._find_exact(extracted, items)
        if exact is not None:
            return ValidationResult(
                field=field_name,
                extracted_value=raw,
                matched_code=exact.code,
                matched_name=exact.name,
                confidence=EXACT_CONFIDENCE,
                status=ValidationStatus.EXACT,
            )

        candidates = self._rank_candidates(extracted, items)
        best = candidates[0] if candidates else None

        if best is not None and best.score > AUTO_ACCEPT_THRESHOLD:
            status = (
                ValidationStatus.FUZZY_HIGH
                if best.score >= HIGH_CONFIDENCE_THRESHOLD
                else ValidationStatus.FUZZY_MEDIUM
            )
            return ValidationResult(
                field=field_name,
                extracted_value=raw,
                matched_code=best.code,
                matched_name=best.name,
                confidence=best.score,
                status=status,
                alternatives=candidates[1 : 1 + MAX_ALTERNATIVES],
            )

        if best is not None and best.score > ESCALATION_THRESHOLD:
            selection = self._consult_oracle(
                extracted,
                candidates[:ORACLE_CANDIDATE_LIMIT],
                field_name,
                document_context,
            )
            if selection is not None:
                status = (
                    ValidationStatus.FUZZY_MEDIUM
                    if selection.confidence > ORACLE_MEDIUM_THRESHOLD
                    else ValidationStatus.FUZZY_LOW
                )
                alternatives = [alt for alt in candidates if alt.code != selection.code]
                return ValidationResult(
                    field=field_name,
                    extracted_value=raw,
                    matched_code=selection.code,
                    matched_name=selection.name,
                    confidence=selection.confidence,
                    status=status,
                    alternatives=alternatives[:MAX_ALTERNATIVES],
                )

        return ValidationResult(
            field=field_name,
            extracted_value=raw,
            matched_code=best.code if best is not None else None,
            matched_name=best.name if best is not None else None,
            confidence=best.score if best is not None else 0,
            status=ValidationStatus.NO_MATCH,
            alternatives=candidates[:MAX_ALTERNATIVES],
        )

    def validate_all(
        self,
        fields: Mapping[str, Any],
        client_id: str,
    ) -> Dict[str, ValidationResult]:
        """Validate every configured list-match field present in ``fields``.

        Fields run concurrently; the document context handed to the oracle is
        captured once beforehand so no field sees another field's outcome.
        """

        document_context = build_document_context(fields)
        targets = [
            name for name in self._catalog.list_match_fields() if _unwrap(fields.get(name))
        ]
        if not targets:
            return {}

        workers = min(self._max_workers, len(targets))
        logger.info(
            "Validating %d fields for client %s using %d worker threads",
            len(targets),
            client_id,
            workers,
        )

        results: Dict[str, ValidationResult] = {}
        if workers == 1:
            for name in targets:
                results[name] = self.validate(fields[name], name, client_id, document_context)
            return results

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                name: executor.submit(self.validate, fields[name], name, client_id, document_context)
                for name in targets
            }
            for name in targets:
                results[name] = futures[name].result()
        return results

    # ------------------------------------------------------------------
    # Matching helpers
    # ------------------------------------------------------------------
    def _fetch_master_data(self, client_id: str, category: str) -> List[MasterDataItem]:
        try:
            rows = self._provider.fetch_master_data(client_id, category) or []
            return coerce_master_data_items(rows, source=f"{client_id}/{category}")
        except Exception:
            logger.warning(
                "Master data lookup failed for %s/%s; treating as empty",
                client_id,
                category,
                exc_info=True,
            )
            return []

    @staticmethod
    def _find_exact(value: str, items: Sequence[MasterDataItem]) -> Optional[MasterDataItem]:
        target = value.lower()
        for item in items:
            if item.code.lower() == target or item.name.lower() == target:
                return item
        return None

    def _rank_candidates(self, value: str, items: Sequence[MasterDataItem]) -> List[MatchAlternative]:
        scored = [
            MatchAlternative(code=item.code, name=item.name, score=self._scorer(value, item.name))
            for item in items
        ]
        # sorted() is stable, so equal scores keep the master data order
        scored = sorted(scored, key=lambda alt: alt.score, reverse=True)
        return scored[:FUZZY_CANDIDATE_LIMIT]

    def _consult_oracle(
        self,
        value: str,
        candidates: List[MatchAlternative],
        field_name: str,
        document_context: Optional[Dict[str, Any]],
    ) -> Optional[OracleSelection]:
        if self._oracle is None:
            return None
        try:
            selection = self._oracle.disambiguate(value, candidates, field_name, document_context)
        except Exception:
            logger.warning("Disambiguation failed for field %s", field_name, exc_info=True)
            return None
        if selection is None:
            return None
        if isinstance(selection, Mapping):
            try:
                selection = OracleSelection.model_validate(selection)
            except ValidationError:
                logger.warning("Unusable oracle reply for field %s: %r", field_name, selection)
                return None
        if not isinstance(selection, OracleSelection):
            logger.warning("Unusable oracle reply for field %s: %r", field_name, selection)
            return None
        if not any(candidate.code == selection.code for candidate in candidates):
            logger.warning(
                "Oracle selected unknown code %s for field %s; ignoring", selection.code, field_name
            )
            return None
        return selection


__all__ = [
    "AUTO_ACCEPT_THRESHOLD",
    "ESCALATION_THRESHOLD",
    "FieldValidationService",
    "build_document_context",
]
