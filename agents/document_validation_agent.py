import logging
from typing import Any, Dict, Mapping, Optional

from agents.base_agent import AgentContext, AgentOutput, AgentStatus, BaseAgent
from services.block_decoder import BlockGraphDecoder
from services.disambiguation_oracle import LMStudioDisambiguationOracle
from services.field_validation_service import FieldValidationService
from services.master_data_provider import build_master_data_provider
from services.textract_client import TextractBlockSource

logger = logging.getLogger(__name__)

READY_FOR_EXPORT = "ready_for_export"
NEEDS_MAPPING = "needs_mapping"

REQUIRED_EXPORT_FIELDS = ("invoicing_party", "document_date", "invoice_gross_amount")


def determine_accounting_status(fields: Mapping[str, Any]) -> str:
    """Return whether the document carries the minimum fields for ERP export."""

    for name in REQUIRED_EXPORT_FIELDS:
        value = fields.get(name)
        if isinstance(value, Mapping):
            value = value.get("value")
        if not value:
            return NEEDS_MAPPING
    return READY_FOR_EXPORT


class DocumentValidationAgent(BaseAgent):
    """Decode a document's block graph and validate its list-match fields.

    ``input_data`` carries either ``blocks`` (a saved layout-analysis response)
    or ``document`` (raw file bytes, analysed through Textract first).
    """

    def __init__(
        self,
        agent_nick,
        *,
        validation_service: Optional[FieldValidationService] = None,
        decoder: Optional[BlockGraphDecoder] = None,
        block_source: Optional[TextractBlockSource] = None,
    ) -> None:
        super().__init__(agent_nick)
        self._decoder = decoder or BlockGraphDecoder()
        self._validation_service = validation_service
        self._block_source = block_source

    @property
    def block_source(self) -> TextractBlockSource:
        if self._block_source is None:
            self._block_source = TextractBlockSource()
        return self._block_source

    @property
    def validation_service(self) -> FieldValidationService:
        if self._validation_service is None:
            provider = getattr(self.agent_nick, "master_data_provider", None)
            oracle = getattr(self.agent_nick, "disambiguation_oracle", None)
            self._validation_service = FieldValidationService(
                build_master_data_provider(provider),
                oracle or LMStudioDisambiguationOracle(),
            )
        return self._validation_service

    def run(self, context: AgentContext) -> AgentOutput:
        payload = context.input_data if isinstance(context.input_data, dict) else {}

        fields = payload.get("fields") or {}
        if not isinstance(fields, Mapping):
            return AgentOutput(
                status=AgentStatus.FAILED,
                data={},
                error="fields must be a mapping of field name to extracted value",
            )

        data: Dict[str, Any] = {"document": None, "feature_summary": None}
        blocks = payload.get("blocks")
        document_bytes = payload.get("document")
        if blocks is None and isinstance(document_bytes, (bytes, bytearray)):
            blocks = self.block_source.analyze(bytes(document_bytes))
        if blocks is not None:
            document = self._decoder.decode(blocks)
            data["document"] = document.to_json()
            data["feature_summary"] = document.feature_summary()

        client_id = payload.get("client_id") or self.settings.default_client_id
        results = self.validation_service.validate_all(fields, client_id)
        data["validations"] = {
            name: result.model_dump(mode="json") for name, result in results.items()
        }
        data["accounting_status"] = determine_accounting_status(fields)

        matched = sum(1 for result in results.values() if result.is_matched)
        logger.info(
            "Validated %d fields for workflow %s (%d matched)",
            len(results),
            context.workflow_id,
            matched,
        )
        return AgentOutput(status=AgentStatus.SUCCESS, data=data)
