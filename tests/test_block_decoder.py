import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from services.block_decoder import BlockGraphDecoder, Region, decode  # noqa: E402


def _word(block_id, text):
    return {"Id": block_id, "BlockType": "WORD", "Text": text}


def _line(block_id, text=None, words=()):
    block = {"Id": block_id, "BlockType": "LINE"}
    if text is not None:
        block["Text"] = text
    if words:
        block["Relationships"] = [{"Type": "CHILD", "Ids": list(words)}]
    return block


def _key(block_id, words, values):
    return {
        "Id": block_id,
        "BlockType": "KEY_VALUE_SET",
        "EntityTypes": ["KEY"],
        "Relationships": [
            {"Type": "VALUE", "Ids": list(values)},
            {"Type": "CHILD", "Ids": list(words)},
        ],
    }


def _value(block_id, words):
    return {
        "Id": block_id,
        "BlockType": "KEY_VALUE_SET",
        "EntityTypes": ["VALUE"],
        "Relationships": [{"Type": "CHILD", "Ids": list(words)}],
    }


def _cell(block_id, row, column, words=(), **extra):
    block = {"Id": block_id, "BlockType": "CELL", "RowIndex": row, "ColumnIndex": column}
    if words:
        block["Relationships"] = [{"Type": "CHILD", "Ids": list(words)}]
    block.update(extra)
    return block


def _table(block_id, cells):
    return {"Id": block_id, "BlockType": "TABLE", "Relationships": [{"Type": "CHILD", "Ids": list(cells)}]}


def _invoice_blocks():
    return [
        _line("l1", "INVOICE"),
        _line("l2", "Invoice Number: INV-001"),
        _word("w1", "Invoice"),
        _word("w2", "Number:"),
        _word("w3", "INV-001"),
        _key("k1", ["w1", "w2"], ["v1"]),
        _value("v1", ["w3"]),
        _word("w4", "Total"),
        _word("w5", "100.00"),
        _key("k2", ["w4"], ["v2"]),
        _value("v2", ["w5"]),
        _word("c1w", "Item"),
        _word("c2w", "Amount"),
        _word("c3w", "Paper"),
        _word("c4w", "100.00"),
        _cell("c1", 1, 1, ["c1w"]),
        _cell("c2", 1, 2, ["c2w"]),
        _cell("c3", 2, 1, ["c3w"]),
        _cell("c4", 2, 2, ["c4w"]),
        _table("t1", ["c1", "c2", "c3", "c4"]),
        {"Id": "lt1", "BlockType": "LAYOUT_TITLE", "Text": "INVOICE"},
        {"Id": "lh1", "BlockType": "LAYOUT_HEADER", "Text": "Acme Corp"},
        {"Id": "ls1", "BlockType": "LAYOUT_SECTION_HEADER", "Text": "Line Items"},
        {"Id": "sig", "BlockType": "SIGNATURE", "Confidence": 97.5, "Geometry": {"BoundingBox": {"Top": 0.9}}},
    ]


def test_decodes_full_invoice():
    document = decode(_invoice_blocks())

    assert document.text == "INVOICE\nInvoice Number: INV-001\n"
    assert document.key_values == {"Invoice Number:": "INV-001", "Total": "100.00"}
    assert [table.rows for table in document.tables] == [[["Item", "Amount"], ["Paper", "100.00"]]]
    assert document.layout.titles == ["INVOICE"]
    assert document.layout.headers == ["Acme Corp"]
    assert document.layout.sections == ["Line Items"]
    assert document.layout.lists == []
    assert len(document.signatures) == 1
    assert document.signatures[0].confidence == 97.5
    assert document.signatures[0].geometry == {"BoundingBox": {"Top": 0.9}}


def test_feature_summary_counts():
    summary = decode(_invoice_blocks()).feature_summary()

    assert summary == {
        "key_value_pairs": 2,
        "tables_found": 1,
        "layout_elements": {"titles": 1, "headers": 1, "sections": 1},
        "signatures_detected": 1,
    }


def test_text_skips_lines_without_text_and_ignores_words():
    document = decode([_word("w", "loose"), _line("a", "first"), _line("b"), _line("c", "")])

    assert document.text == "first\n"


def test_key_without_value_edge_is_dropped():
    blocks = [_word("w1", "Orphan"), _key("k1", ["w1"], [])]

    assert decode(blocks).key_values == {}


def test_key_with_empty_value_text_is_dropped():
    blocks = [_word("w1", "Date"), _key("k1", ["w1"], ["v1"]), _value("v1", [])]

    assert decode(blocks).key_values == {}


def test_first_resolvable_value_edge_wins():
    blocks = [
        _word("w1", "Vendor"),
        _word("w2", "Acme"),
        _word("w3", "Globex"),
        _key("k1", ["w1"], ["missing", "v1", "v2"]),
        _value("v1", ["w2"]),
        _value("v2", ["w3"]),
    ]

    assert decode(blocks).key_values == {"Vendor": "Acme"}


def test_duplicate_key_text_keeps_last():
    blocks = [
        _word("w1", "Total"),
        _word("w2", "Total"),
        _word("w3", "10"),
        _word("w4", "20"),
        _key("k1", ["w1"], ["v1"]),
        _value("v1", ["w3"]),
        _key("k2", ["w2"], ["v2"]),
        _value("v2", ["w4"]),
    ]

    assert decode(blocks).key_values == {"Total": "20"}


def test_only_word_children_contribute_text():
    blocks = [
        _word("w1", "PO"),
        _line("l1", "PO Number"),
        _word("w2", "4500"),
        _key("k1", ["w1", "l1", "ghost"], ["v1"]),
        _value("v1", ["w2"]),
    ]

    assert decode(blocks).key_values == {"PO": "4500"}


def test_sparse_table_fills_gaps_and_drops_unallocated_rows():
    blocks = [
        _word("a", "A"),
        _word("c", "C"),
        _word("x", "X"),
        _cell("c11", 1, 1, ["a"]),
        _cell("c13", 1, 3, ["c"]),
        _cell("c32", 3, 2, ["x"]),
        _table("t", ["c11", "c13", "c32"]),
    ]

    assert decode(blocks).tables[0].rows == [["A", "", "C"], ["", "X"]]


def test_table_row_of_empty_cells_is_kept():
    blocks = [_cell("c1", 1, 1), _cell("c2", 1, 2), _table("t", ["c1", "c2"])]

    tables = decode(blocks).tables
    assert len(tables) == 1
    assert tables[0].rows == [["", ""]]


def test_table_without_cells_is_excluded():
    blocks = [_table("t", ["nowhere"]), {"Id": "t2", "BlockType": "TABLE"}]

    assert decode(blocks).tables == []


def test_missing_or_invalid_cell_positions_default_to_one():
    blocks = [
        _word("w", "Only"),
        {"Id": "c1", "BlockType": "CELL", "RowIndex": 0, "Relationships": [{"Type": "CHILD", "Ids": ["w"]}]},
        _table("t", ["c1"]),
    ]

    table = decode(blocks).tables[0]
    assert table.rows == [["Only"]]
    assert table.raw_cells[0].row_index == 1
    assert table.raw_cells[0].column_index == 1


def test_spans_are_recorded_but_not_expanded():
    blocks = [
        _word("m", "Merged"),
        _word("z", "Z"),
        _cell("c1", 1, 1, ["m"], ColumnSpan=2, RowSpan=0),
        _cell("c3", 1, 3, ["z"]),
        _table("t", ["c1", "c3"]),
    ]

    table = decode(blocks).tables[0]
    assert table.rows == [["Merged", "", "Z"]]
    assert table.raw_cells[0].column_span == 2
    assert table.raw_cells[0].row_span == 1
    assert table.to_json()["raw_cells"][1] == {
        "row_index": 1,
        "column_index": 3,
        "text": "Z",
        "row_span": 1,
        "column_span": 1,
    }


def test_unknown_layout_blocks_are_ignored():
    blocks = [
        {"Id": "f", "BlockType": "LAYOUT_FIGURE", "Text": "chart"},
        {"Id": "l", "BlockType": "LAYOUT_LIST", "Text": "1. Paper"},
    ]

    layout = decode(blocks).layout
    assert layout.lists == ["1. Paper"]
    assert layout.titles == layout.headers == layout.sections == []


def test_layout_without_text_uses_child_lines():
    blocks = [
        _line("l1", "Remit To"),
        _line("l2", "Acme Corp"),
        {"Id": "h", "BlockType": "LAYOUT_HEADER", "Relationships": [{"Type": "CHILD", "Ids": ["l1", "l2"]}]},
    ]

    assert decode(blocks).layout.headers == ["Remit To Acme Corp"]


def test_malformed_input_never_raises():
    assert decode(None).to_json()["text"] == ""
    assert decode(42).key_values == {}
    assert decode({"Blocks": None}).tables == []

    document = decode(
        [
            None,
            "garbage",
            {"BlockType": "LINE", "Text": "no id"},
            {"Id": "k", "BlockType": "KEY_VALUE_SET", "EntityTypes": "KEY", "Relationships": "bad"},
            {"Id": "c", "BlockType": "CELL", "RowIndex": "x", "ColumnIndex": None},
            _table("t", ["c", "dangling"]),
            _line("ok", "kept"),
        ]
    )
    assert document.text == "kept\n"
    assert document.tables[0].rows == [[""]]


def test_accepts_response_mapping_and_region_objects():
    blocks = _invoice_blocks()
    regions = [Region.from_block(block) for block in blocks]

    from_mapping = decode({"Blocks": blocks})
    from_regions = BlockGraphDecoder().decode(regions)

    assert from_mapping.to_json() == from_regions.to_json()


def test_decoding_is_deterministic_and_order_independent():
    blocks = _invoice_blocks()
    first = decode(blocks)
    again = decode(blocks)
    reversed_document = decode(list(reversed(blocks)))

    assert first.to_json() == again.to_json()
    assert reversed_document.key_values == first.key_values
    assert [table.rows for table in reversed_document.tables] == [table.rows for table in first.tables]
    assert reversed_document.layout.to_json() == first.layout.to_json()
    assert sorted(reversed_document.text.splitlines()) == sorted(first.text.splitlines())


def test_out_of_range_cell_positions_are_skipped():
    blocks = [
        _word("a", "A"),
        _word("b", "B"),
        _word("c", "C"),
        _word("d", "D"),
        _cell("ok", 1, 1, ["a"]),
        _cell("inf", 1, float("inf"), ["b"]),
        _cell("huge", 1, 10**11, ["c"]),
        _cell("nan", float("nan"), 2, ["d"], RowSpan=float("inf")),
        _table("t", ["ok", "inf", "huge", "nan"]),
        {"Id": "s", "BlockType": "SIGNATURE", "Confidence": 10**400},
    ]

    document = decode(blocks)

    table = document.tables[0]
    # an unparseable index counts as 1, so "B" lands on top of "A"
    assert table.rows == [["B", "D"]]
    assert [cell.text for cell in table.raw_cells] == ["A", "B", "D"]
    assert table.raw_cells[1].column_index == 1
    assert table.raw_cells[2].row_span == 1
    assert document.signatures[0].confidence is None


def test_layout_follows_reading_position_not_input_order():
    blocks = [
        {"Id": "h2", "BlockType": "LAYOUT_HEADER", "Text": "Bill To", "Geometry": {"BoundingBox": {"Top": 0.3, "Left": 0.1}}},
        {"Id": "h3", "BlockType": "LAYOUT_HEADER", "Text": "Ship To", "Geometry": {"BoundingBox": {"Top": 0.3, "Left": 0.6}}},
        {"Id": "h1", "BlockType": "LAYOUT_HEADER", "Text": "Acme Corp", "Geometry": {"BoundingBox": {"Top": 0.05, "Left": 0.5}}},
        {"Id": "hb", "BlockType": "LAYOUT_HEADER", "Text": "Footer B"},
        {"Id": "ha", "BlockType": "LAYOUT_HEADER", "Text": "Footer A", "Geometry": "opaque"},
    ]

    forward = decode(blocks).layout
    backward = decode(list(reversed(blocks))).layout

    assert forward.headers == ["Acme Corp", "Bill To", "Ship To", "Footer A", "Footer B"]
    assert backward.to_json() == forward.to_json()
