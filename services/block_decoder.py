"""Decode an OCR block graph into text, forms, tables, layout and signatures.

Layout-analysis services return a document as a flat list of blocks (lines,
words, key/value markers, tables, cells, layout regions, signatures) linked
by ``CHILD`` and ``VALUE`` relationships.  :class:`BlockGraphDecoder` rebuilds
the structures the rest of the pipeline consumes:

* ``text`` - every LINE block's text, newline terminated, in input order;
* ``key_values`` - form keys mapped to their value text;
* ``tables`` - rows of cell text reflowed from sparse cell coordinates;
* ``layout`` - titles, headers, section headers and lists in reading order
  (top to bottom, then left to right, then block id), whatever the input order;
* ``signatures`` - confidence and geometry of each detected signature.

Decoding is total.  Dangling relationship ids, missing text and malformed
blocks never raise; they simply contribute empty strings or nothing at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

CHILD = "CHILD"
VALUE = "VALUE"

LINE = "LINE"
WORD = "WORD"
KEY_VALUE_SET = "KEY_VALUE_SET"
TABLE = "TABLE"
CELL = "CELL"
SIGNATURE = "SIGNATURE"
LAYOUT_PREFIX = "LAYOUT_"

KEY_ENTITY = "KEY"

LAYOUT_SEQUENCES = {
    "LAYOUT_TITLE": "titles",
    "LAYOUT_HEADER": "headers",
    "LAYOUT_SECTION_HEADER": "sections",
    "LAYOUT_LIST": "lists",
}

# cells placed further out than this are treated as corrupt
MAX_TABLE_INDEX = 10_000


# ---------------------------------------------------------------------------
# Input model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Relationship:
    type: str
    ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Region:
    """One annotated block of the layout analysis output."""

    id: str
    block_type: str
    text: Optional[str] = None
    confidence: Optional[float] = None
    relationships: Tuple[Relationship, ...] = ()
    entity_types: Tuple[str, ...] = ()
    row_index: Optional[int] = None
    column_index: Optional[int] = None
    row_span: Optional[int] = None
    column_span: Optional[int] = None
    geometry: Any = None

    @classmethod
    def from_block(cls, block: Mapping[str, Any]) -> Optional["Region"]:
        """Build a region from a raw block dictionary.

        Returns ``None`` when the block carries no usable identifier.
        """

        if not isinstance(block, Mapping):
            return None
        block_id = block.get("Id")
        if block_id is None or str(block_id) == "":
            return None

        relationships: List[Relationship] = []
        raw_relationships = block.get("Relationships")
        if isinstance(raw_relationships, (list, tuple)):
            for entry in raw_relationships:
                if not isinstance(entry, Mapping):
                    continue
                ids = entry.get("Ids")
                if not isinstance(ids, (list, tuple)):
                    continue
                relationships.append(
                    Relationship(
                        type=str(entry.get("Type") or ""),
                        ids=tuple(str(item) for item in ids if item is not None),
                    )
                )

        entity_types = block.get("EntityTypes")
        if not isinstance(entity_types, (list, tuple)):
            entity_types = ()

        text = block.get("Text")
        return cls(
            id=str(block_id),
            block_type=str(block.get("BlockType") or ""),
            text=text if isinstance(text, str) else None,
            confidence=_coerce_float(block.get("Confidence")),
            relationships=tuple(relationships),
            entity_types=tuple(str(item) for item in entity_types),
            row_index=_coerce_int(block.get("RowIndex")),
            column_index=_coerce_int(block.get("ColumnIndex")),
            row_span=_coerce_int(block.get("RowSpan")),
            column_span=_coerce_int(block.get("ColumnSpan")),
            geometry=block.get("Geometry"),
        )

    def related_ids(self, relationship_type: str) -> Iterable[str]:
        for relationship in self.relationships:
            if relationship.type == relationship_type:
                yield from relationship.ids

    @property
    def is_key(self) -> bool:
        return KEY_ENTITY in self.entity_types


RegionLike = Union[Region, Mapping[str, Any]]


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return None


# ---------------------------------------------------------------------------
# Output model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TableCell:
    row_index: int
    column_index: int
    text: str
    row_span: int = 1
    column_span: int = 1

    def to_json(self) -> Dict[str, Any]:
        return {
            "row_index": self.row_index,
            "column_index": self.column_index,
            "text": self.text,
            "row_span": self.row_span,
            "column_span": self.column_span,
        }


@dataclass
class ExtractedTable:
    rows: List[List[str]]
    raw_cells: List[TableCell] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "rows": [list(row) for row in self.rows],
            "raw_cells": [cell.to_json() for cell in self.raw_cells],
        }


@dataclass
class DocumentLayout:
    titles: List[str] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    sections: List[str] = field(default_factory=list)
    lists: List[str] = field(default_factory=list)

    def to_json(self) -> Dict[str, List[str]]:
        return {
            "titles": list(self.titles),
            "headers": list(self.headers),
            "sections": list(self.sections),
            "lists": list(self.lists),
        }


@dataclass(frozen=True)
class SignatureDetection:
    confidence: Optional[float]
    geometry: Any = None

    def to_json(self) -> Dict[str, Any]:
        return {"confidence": self.confidence, "geometry": self.geometry}


@dataclass
class ExtractedDocument:
    """Structured view of one document's block graph."""

    text: str = ""
    key_values: Dict[str, str] = field(default_factory=dict)
    tables: List[ExtractedTable] = field(default_factory=list)
    layout: DocumentLayout = field(default_factory=DocumentLayout)
    signatures: List[SignatureDetection] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "key_values": dict(self.key_values),
            "tables": [table.to_json() for table in self.tables],
            "layout": self.layout.to_json(),
            "signatures": [signature.to_json() for signature in self.signatures],
        }

    def feature_summary(self) -> Dict[str, Any]:
        """Counts of the extracted features, as recorded in document metadata."""

        return {
            "key_value_pairs": len(self.key_values),
            "tables_found": len(self.tables),
            "layout_elements": {
                "titles": len(self.layout.titles),
                "headers": len(self.layout.headers),
                "sections": len(self.layout.sections),
            },
            "signatures_detected": len(self.signatures),
        }


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


@dataclass
class _BlockIndex:
    blocks: Dict[str, Region] = field(default_factory=dict)
    keys: Dict[str, Region] = field(default_factory=dict)
    values: Dict[str, Region] = field(default_factory=dict)
    tables: Dict[str, Region] = field(default_factory=dict)
    cells: Dict[str, Region] = field(default_factory=dict)


class BlockGraphDecoder:
    """Rebuild document structure from a flat block graph."""

    def decode(self, regions: Union[Iterable[RegionLike], Mapping[str, Any], None]) -> ExtractedDocument:
        ordered = self._coerce_regions(regions)
        index = self._build_index(ordered)

        lines: List[str] = []
        layout_regions: List[Region] = []
        signatures: List[SignatureDetection] = []

        for region in ordered:
            if region.block_type == LINE and region.text:
                lines.append(region.text + "\n")
            elif region.block_type.startswith(LAYOUT_PREFIX):
                if region.block_type in LAYOUT_SEQUENCES:
                    layout_regions.append(region)
            elif region.block_type == SIGNATURE:
                signatures.append(
                    SignatureDetection(confidence=region.confidence, geometry=region.geometry)
                )

        layout = self._extract_layout(layout_regions, index)
        key_values = self._extract_key_values(index)
        tables = self._extract_tables(index)

        document = ExtractedDocument(
            text="".join(lines),
            key_values=key_values,
            tables=tables,
            layout=layout,
            signatures=signatures,
        )
        logger.info(
            "Decoded %d blocks: %d key-value pairs, %d tables, %d titles, %d signatures",
            len(ordered),
            len(key_values),
            len(tables),
            len(layout.titles),
            len(signatures),
        )
        return document

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------
    def _coerce_regions(self, regions: Any) -> List[Region]:
        if regions is None:
            return []
        if isinstance(regions, Mapping):
            regions = regions.get("Blocks") or []
        try:
            items = list(regions)
        except TypeError:
            logger.debug("Ignoring non-iterable block payload of type %s", type(regions).__name__)
            return []

        ordered: List[Region] = []
        for item in items:
            region = item if isinstance(item, Region) else Region.from_block(item)
            if region is None:
                logger.debug("Skipping malformed block %r", item)
                continue
            ordered.append(region)
        return ordered

    def _build_index(self, regions: List[Region]) -> _BlockIndex:
        index = _BlockIndex()
        for region in regions:
            index.blocks[region.id] = region
            if region.block_type == KEY_VALUE_SET:
                if region.is_key:
                    index.keys[region.id] = region
                else:
                    index.values[region.id] = region
            elif region.block_type == TABLE:
                index.tables[region.id] = region
            elif region.block_type == CELL:
                index.cells[region.id] = region
        return index

    # ------------------------------------------------------------------
    # Text resolution
    # ------------------------------------------------------------------
    def _child_text(self, region: Region, index: _BlockIndex, child_type: str = WORD) -> str:
        parts: List[str] = []
        for child_id in region.related_ids(CHILD):
            child = index.blocks.get(child_id)
            if child is not None and child.block_type == child_type and child.text:
                parts.append(child.text)
        return " ".join(parts).strip()

    def _extract_layout(self, regions: List[Region], index: _BlockIndex) -> DocumentLayout:
        layout = DocumentLayout()
        for region in sorted(regions, key=_reading_position):
            sequence = LAYOUT_SEQUENCES[region.block_type]
            getattr(layout, sequence).append(self._layout_text(region, index))
        return layout

    def _layout_text(self, region: Region, index: _BlockIndex) -> str:
        if region.text:
            return region.text
        # layout blocks usually carry their text on child LINE blocks
        return self._child_text(region, index, child_type=LINE)

    # ------------------------------------------------------------------
    # Forms
    # ------------------------------------------------------------------
    def _extract_key_values(self, index: _BlockIndex) -> Dict[str, str]:
        key_values: Dict[str, str] = {}
        for key_region in index.keys.values():
            value_region = self._find_value_region(key_region, index)
            if value_region is None:
                continue
            key_text = self._child_text(key_region, index)
            value_text = self._child_text(value_region, index)
            if key_text and value_text:
                key_values[key_text] = value_text
        return key_values

    @staticmethod
    def _find_value_region(key_region: Region, index: _BlockIndex) -> Optional[Region]:
        for value_id in key_region.related_ids(VALUE):
            value_region = index.values.get(value_id)
            if value_region is not None:
                return value_region
        return None

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------
    def _extract_tables(self, index: _BlockIndex) -> List[ExtractedTable]:
        tables: List[ExtractedTable] = []
        for table_region in index.tables.values():
            table = self._extract_table(table_region, index)
            if table.rows:
                tables.append(table)
        return tables

    def _extract_table(self, table_region: Region, index: _BlockIndex) -> ExtractedTable:
        cells: List[TableCell] = []
        for cell_id in table_region.related_ids(CHILD):
            cell_region = index.cells.get(cell_id)
            if cell_region is None:
                continue
            row_index = _position(cell_region.row_index)
            column_index = _position(cell_region.column_index)
            if row_index > MAX_TABLE_INDEX or column_index > MAX_TABLE_INDEX:
                logger.debug(
                    "Skipping cell %s at implausible position (%d, %d)",
                    cell_region.id,
                    row_index,
                    column_index,
                )
                continue
            cells.append(
                TableCell(
                    row_index=row_index,
                    column_index=column_index,
                    text=self._child_text(cell_region, index),
                    row_span=_position(cell_region.row_span),
                    column_span=_position(cell_region.column_span),
                )
            )

        placed: Dict[int, Dict[int, str]] = {}
        for cell in cells:
            placed.setdefault(cell.row_index - 1, {})[cell.column_index - 1] = cell.text

        rows: List[List[str]] = []
        for row_number in sorted(placed):
            columns = placed[row_number]
            row = [""] * (max(columns) + 1)
            for column_number, text in columns.items():
                row[column_number] = text
            rows.append(row)
        return ExtractedTable(rows=rows, raw_cells=cells)


def _position(value: Optional[int]) -> int:
    """1-based index or span; anything missing or non-positive counts as 1."""

    if value is None or value < 1:
        return 1
    return value


def _reading_position(region: Region) -> Tuple[float, float, str]:
    """Sort key placing a region by its bounding box, unplaced regions last."""

    box = region.geometry.get("BoundingBox") if isinstance(region.geometry, Mapping) else None
    if not isinstance(box, Mapping):
        box = {}
    top = _coerce_float(box.get("Top"))
    left = _coerce_float(box.get("Left"))
    # NaN never compares equal to itself
    if top is None or top != top:
        top = float("inf")
    if left is None or left != left:
        left = float("inf")
    return (top, left, region.id)


def decode(regions: Union[Iterable[RegionLike], Mapping[str, Any], None]) -> ExtractedDocument:
    """Decode ``regions`` with a fresh :class:`BlockGraphDecoder`."""

    return BlockGraphDecoder().decode(regions)


__all__ = [
    "BlockGraphDecoder",
    "DocumentLayout",
    "ExtractedDocument",
    "ExtractedTable",
    "Region",
    "Relationship",
    "SignatureDetection",
    "TableCell",
    "decode",
]
