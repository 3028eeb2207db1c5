"""Decode a saved layout-analysis response and validate mapped invoice fields.

Example::

    python scripts/validate_document_demo.py analyze_document.json \
        --fields '{"invoicing_party": "Jacks Foods", "tax_code": "V1"}'

Master data comes from ``resources/reference_data/sample_master_data.json``
unless ``--live`` is given, in which case the configured Postgres store and
LM Studio oracle are used.  ``--document invoice.pdf`` runs Textract on a file
instead of reading a saved response and needs AWS credentials.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from pprint import pprint
from typing import Any, Dict, Optional, Sequence

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config.settings import settings  # noqa: E402
from services.block_decoder import decode  # noqa: E402
from services.disambiguation_oracle import LMStudioDisambiguationOracle  # noqa: E402
from services.field_validation_service import FieldValidationService  # noqa: E402
from services.master_data_provider import (  # noqa: E402
    InMemoryMasterDataProvider,
    build_master_data_provider,
)
from services.textract_client import TextractBlockSource  # noqa: E402

logging.basicConfig(level=os.environ.get("PROCWISE_LOG_LEVEL", "INFO"))


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("response", type=Path, nargs="?", help="JSON file holding an AnalyzeDocument response")
    parser.add_argument("--document", type=Path, help="PDF or image to analyse with Textract instead")
    parser.add_argument("--fields", default="{}", help="JSON object of mapped field values")
    parser.add_argument("--client-id", default=settings.default_client_id)
    parser.add_argument("--live", action="store_true", help="use Postgres and LM Studio")
    args = parser.parse_args(argv)
    if args.response is None and args.document is None:
        parser.error("give a saved response or --document")
    return args


def run_demo(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    if args.document is not None:
        response = TextractBlockSource().analyze(args.document.read_bytes())
    else:
        response = json.loads(args.response.read_text(encoding="utf-8"))
    fields: Dict[str, Any] = json.loads(args.fields)

    document = decode(response)
    _print_section("Feature Summary")
    pprint(document.feature_summary())
    _print_section("Key Values")
    pprint(document.key_values)
    for position, table in enumerate(document.tables, start=1):
        _print_section(f"Table {position}")
        for row in table.rows:
            print(" | ".join(row))

    if args.live:
        service = FieldValidationService(build_master_data_provider(), LMStudioDisambiguationOracle())
    else:
        service = FieldValidationService(InMemoryMasterDataProvider.from_reference())

    results = service.validate_all(fields, args.client_id)
    _print_section("Field Validation")
    for name, result in results.items():
        print(f"{name}: {result.status.value} -> {result.matched_code} ({result.confidence})")


if __name__ == "__main__":
    run_demo()
