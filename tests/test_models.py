import datetime as dt

import pytest

from receipt_extraction.core.errors import ErrorCode
from receipt_extraction.core.models import (FileKind, LineItem, ReceiptData, ReceiptFile,
                                            ReceiptProcessingResult)


@pytest.mark.parametrize("name, price", [("", 10.0), ("   ", 10.0), ("Milk", 0), ("Milk", -5.0)])
def test_line_item_rejects_invalid_values(name, price):
    with pytest.raises(ValueError):
        LineItem(name=name, price=price)


def test_success_result_to_dict():
    data = ReceiptData(
        date=dt.datetime(2024, 3, 15, 14, 30),
        amount=134.0,
        merchant="Самокат",
        items=[LineItem("Молоко", 89.0)],
    )
    d = ReceiptProcessingResult.ok(data, raw_text="text").to_dict()

    assert d["success"] is True
    assert d["data"]["date"] == "2024-03-15T14:30:00"
    assert d["data"]["items"] == [{"name": "Молоко", "price": 89.0}]
    assert d["raw_text"] == "text"
    assert "qr_payload" not in d
    assert "error" not in d


def test_failure_result_to_dict():
    result = ReceiptProcessingResult.failure(ErrorCode.NO_AMOUNT_FOUND, "no total",
                                             qr_payload="t=1")
    assert result.success is False
    assert result.data is None
    assert result.to_dict() == {
        "success": False,
        "error": "no total",
        "error_code": "no_amount_found",
        "qr_payload": "t=1",
    }


def test_receipt_file_from_path(tmp_path):
    path = tmp_path / "receipt.txt"
    path.write_bytes(b"TOTAL 5.00")

    file = ReceiptFile.from_path(path)

    assert file.kind is FileKind.TEXT
    assert file.file_name == "receipt.txt"
    assert file.data == b"TOTAL 5.00"
