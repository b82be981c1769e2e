import datetime as dt

import pytest

from receipt_extraction.core.qr import parse_fiscal_payload, read_qr


def test_parse_full_fiscal_payload():
    payload = "t=20240315T1430&s=900.00&fn=9960440300000000&i=12345&fp=1234567890&n=1"
    fragment = parse_fiscal_payload(payload)

    assert fragment.timestamp == dt.datetime(2024, 3, 15, 14, 30)
    assert fragment.amount == 900.0
    assert fragment.registry_id == "9960440300000000"
    assert fragment.document_id == "12345"
    assert fragment.signature == "1234567890"
    assert fragment.operation_type == "1"


def test_parse_payload_with_seconds_and_taxpayer_id():
    fragment = parse_fiscal_payload("t=20231231T235959&s=15,50&inn=7701234567")
    assert fragment.timestamp == dt.datetime(2023, 12, 31, 23, 59, 59)
    assert fragment.amount == 15.5
    assert fragment.taxpayer_id == "7701234567"
    assert fragment.registry_id is None


def test_parse_payload_amount_only():
    fragment = parse_fiscal_payload("s=120.00")
    assert fragment.amount == 120.0
    assert fragment.timestamp is None


@pytest.mark.parametrize("payload", [
    None,
    "",
    "https://example.com/promo",
    "fn=9960440300000000&i=1",
    "t=2024-03-15&s=900.00",
    "t=20241345T1430&s=900.00",
    "t=20240315T1430&s=abc",
])
def test_parse_malformed_payloads(payload):
    assert parse_fiscal_payload(payload) is None


def test_read_qr_without_code(png_bytes):
    assert read_qr(png_bytes) is None


@pytest.mark.parametrize("data", [b"", b"definitely not an image"])
def test_read_qr_unreadable_bytes(data):
    assert read_qr(data) is None


def test_read_qr_decodes_fiscal_code(make_qr_png):
    payload = "t=20240315T1430&s=900.00&fn=9960440300000000&i=12345&fp=1234567890&n=1"

    assert read_qr(make_qr_png(payload)) == payload
    assert parse_fiscal_payload(read_qr(make_qr_png(payload))).amount == 900.0
