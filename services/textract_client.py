"""Boundary adapter around the AWS Textract ``AnalyzeDocument`` call."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import boto3
from botocore.config import Config

from config.settings import settings
from services.block_decoder import Region

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_TYPES = ("FORMS", "TABLES", "LAYOUT", "SIGNATURES")


class TextractBlockSource:
    """Run layout analysis on document bytes and return the block graph.

    Errors raised by the AWS client propagate; retry and timeout policy
    belongs to the caller and the botocore configuration.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        *,
        feature_types: Sequence[str] = DEFAULT_FEATURE_TYPES,
    ) -> None:
        self._client = client
        self._feature_types = list(feature_types)

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "textract",
                region_name=settings.aws_region,
                config=Config(retries={"max_attempts": 3, "mode": "standard"}),
            )
        return self._client

    def analyze(self, document: bytes) -> List[Region]:
        response = self.client.analyze_document(
            Document={"Bytes": document},
            FeatureTypes=self._feature_types,
        )
        blocks = response.get("Blocks") or []
        regions: List[Region] = []
        for block in blocks:
            region = Region.from_block(block)
            if region is not None:
                regions.append(region)
        logger.info("Layout analysis returned %d blocks", len(regions))
        return regions


__all__ = ["DEFAULT_FEATURE_TYPES", "TextractBlockSource"]
