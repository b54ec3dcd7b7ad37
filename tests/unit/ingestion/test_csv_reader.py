"""
Test the streaming CSV reader.
"""

import io

import pytest

from catalog_loader.errors import EmptyCsvError
from catalog_loader.ingestion.csv_reader import CsvStreamReader, detect_encoding, normalize_headers


def read_all(payload: bytes, **kwargs):
    return list(CsvStreamReader(io.BytesIO(payload), **kwargs))


def test_rows_are_mapped_to_headers(sample_csv_data):
    rows = read_all(sample_csv_data)

    assert [r.number for r in rows] == [2, 3, 4]
    assert rows[0].data == {"sku": "SKU-1", "name": "Widget", "price": "9.99", "category": "Tools", "stock": "5"}
    assert rows[1].data["stock"] == ""
    assert not any(r.is_malformed for r in rows)


def test_headers_are_normalized():
    reader = CsvStreamReader(io.BytesIO(b" SKU , Name ,PRICE\nA,B,1\n"))
    rows = list(reader)

    assert reader.headers == ["sku", "name", "price"]
    assert rows[0].data == {"sku": "A", "name": "B", "price": "1"}


def test_normalize_headers():
    assert normalize_headers([" Sku", "NAME "]) == ["sku", "name"]


def test_column_count_mismatch_is_reported_per_row():
    rows = read_all(b"sku,name,price\nA,B,1\nC,D\nE,F,2,extra\nG,H,3\n")

    assert [r.number for r in rows] == [2, 3, 4, 5]
    assert rows[1].is_malformed
    assert rows[1].error == "Row has 2 columns but header has 3"
    assert rows[2].error == "Row has 4 columns but header has 3"
    assert rows[3].data["sku"] == "G"


def test_blank_lines_are_skipped_but_numbered():
    rows = read_all(b"sku,name,price\nA,B,1\n\nC,D,2\n")

    assert [r.number for r in rows] == [2, 4]


def test_quoted_fields_with_commas_and_newlines():
    rows = read_all(b'sku,name,price\nA,"Widget, large",1\nB,"two\nlines",2\n')

    assert rows[0].data["name"] == "Widget, large"
    assert rows[1].data["name"] == "two\nlines"
    assert rows[1].number == 3


def test_crlf_line_endings():
    rows = read_all(b"sku,name,price\r\nA,B,1\r\nC,D,2\r\n")

    assert [r.data["sku"] for r in rows] == ["A", "C"]


def test_utf8_bom_is_dropped():
    reader = CsvStreamReader(io.BytesIO("\ufeffsku,name,price\nA,Café,1\n".encode("utf-8")))
    rows = list(reader)

    assert reader.headers[0] == "sku"
    assert rows[0].data["name"] == "Café"


def test_explicit_encoding():
    payload = "sku,name,price\nA,Café,1\n".encode("latin-1")
    rows = read_all(payload, encoding="latin-1")

    assert rows[0].data["name"] == "Café"


def test_header_only_file_has_no_rows():
    assert read_all(b"sku,name,price\n") == []


@pytest.mark.parametrize("payload", [b"", b"\n"])
def test_empty_file(payload):
    with pytest.raises(EmptyCsvError):
        read_all(payload)


def test_large_file_is_streamed_past_the_sample():
    body = "".join(f"SKU-{i},Item {i},{i}.00\n" for i in range(2000))
    rows = read_all(("sku,name,price\n" + body).encode("ascii"))

    assert len(rows) == 2000
    assert rows[-1].number == 2001
    assert rows[-1].data["sku"] == "SKU-1999"


def test_reader_is_single_pass(sample_csv_data):
    reader = CsvStreamReader(io.BytesIO(sample_csv_data))
    list(reader)

    with pytest.raises(RuntimeError):
        iter(reader)


def test_detect_encoding_defaults_to_utf8():
    assert detect_encoding(b"") == "utf-8-sig"
    assert detect_encoding(b"sku,name,price\n") == "utf-8-sig"


def test_oversized_field_is_a_malformed_row():
    payload = b"sku,name,price\nA,B,1\nC," + b"x" * 200 + b",2\nE,F,3\n"

    rows = read_all(payload, field_size_limit=100)

    assert [r.number for r in rows] == [2, 3, 4]
    assert rows[1].is_malformed
    assert rows[1].error.startswith("Malformed row:")
    assert rows[2].data["sku"] == "E"


def test_fields_beyond_csv_module_default_are_read():
    description = "d" * 200000
    rows = read_all(f"sku,name,price,description\nA,B,1,{description}\n".encode("ascii"))

    assert rows[0].data["description"] == description
