"""
Supplier import tests.

Workbooks are built in memory with openpyxl and uploaded through the
multipart endpoint, the same way the back office does it.
"""

import io
import json
from datetime import date

import pytest
from openpyxl import Workbook

from floradesk.extensions import db
from floradesk.models import Flower, Supply, Variant
from floradesk.services import import_service
from floradesk.services.import_normalizer import compute_row_hash, normalize_grade, title_case
from floradesk.services.import_parser import ParseError, detect_format, parse_workbook


def _xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(list(row))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


GENERIC_ROWS = [
    ("Variety", "Grade", "Units", "Price"),
    ("FREEDOM", "60", 100, 0.5),
    ("Explorer", "70cm", 50, 0.6),
]

ROSS_ROWS = [
    ("ROSS FLOWERS", None, None, None, None, "15.10.2026", None),
    ("CULTIVOS", "FB", "VARIEDAD", "GRADO", "TALLOS", "PRECIO", "TOTAL"),
    ("Farm A", 0.5, "Freedom", "60", 200, 0.4, 80),
    (None, None, "Explorer", "70", 100, 0.5, 50),
    ("TOTAL", 0.5, None, None, 300, None, 130),
    ("Transport", None, None, None, None, None, 60),
]


def _upload(client, headers, content, filename="invoice.xlsx", **fields):
    data = {"file": (io.BytesIO(content), filename)}
    data.update({key: str(value) for key, value in fields.items()})
    return client.post("/api/imports/excel", data=data, headers=headers, content_type="multipart/form-data")


def _variant(slug, length):
    db.session.expire_all()
    return (
        db.session.query(Variant)
        .join(Flower)
        .filter(Flower.slug == slug, Variant.length == length)
        .one_or_none()
    )


# =============================================================================
# PARSING & NORMALIZATION
# =============================================================================


class TestParser:

    def test_generic_header(self):
        rows, detection = parse_workbook(_xlsx(GENERIC_ROWS))

        assert detection.format == "unknown"
        assert detection.mapping["variety"] == 0
        assert detection.mapping["price"] == 3
        assert [r["variety"] for r in rows] == ["FREEDOM", "Explorer"]
        assert rows[0]["units"] == 100
        assert rows[0]["rowIndex"] == 2

    def test_ross_layout_and_metadata(self):
        rows, detection = parse_workbook(_xlsx(ROSS_ROWS))

        assert detection.format == "ross"
        assert detection.metadata["date"] == date(2026, 10, 15)
        assert detection.metadata["transport"] == 60
        assert detection.metadata["totalFB"] == 0.5
        assert detection.metadata["totalBoxes"] == 1
        assert len(rows) == 2
        assert rows[1]["supplier"] == "Farm A"
        assert rows[1]["boxId"] == "Farm A"

    def test_colombia_layout(self):
        data = [
            (1234, "15.10.2026", "AWB 123-4567 8901", "price", "total", None, None, None, None, None),
            ("QB1", "Freedom", "Rose", "50", 100, "Farm B", "Client", 0.45, 45, None),
        ]
        detection = detect_format(data)

        assert detection.format == "colombia"
        assert detection.metadata == {"documentId": "1234", "date": date(2026, 10, 15), "awb": "123-4567 8901"}

        rows, _ = parse_workbook(_xlsx(data))
        assert rows[0]["type"] == "Rose"
        assert rows[0]["awb"] == "123-4567 8901"

    def test_empty_workbook(self):
        with pytest.raises(ParseError):
            parse_workbook(_xlsx([]))


class TestNormalizer:

    @pytest.mark.parametrize(
        "text,expected",
        [("FREEDOM red", "Freedom Red"), ("rose xl", "Rose XL"), ("хризантема кущова", "Хризантема Кущова")],
    )
    def test_title_case(self, text, expected):
        assert title_case(text) == expected

    def test_grades(self):
        assert normalize_grade("90cm", 1) == (90, None, None)
        assert normalize_grade("jumbo", 1) == (None, "Jumbo", None)
        length, grade, warning = normalize_grade("900", 1)
        assert (length, grade) == (None, "900")
        assert warning["message"] == "Length 900 out of range (1-500), treating as grade"

    def test_row_hash_is_stable(self):
        first = compute_row_hash("Freedom", 60, None, 100, 0.5, None, None)
        assert first == compute_row_hash("FREEDOM", 60, None, 100, 0.5, None, None)
        assert first != compute_row_hash("Freedom", 70, None, 100, 0.5, None, None)
        assert len(first) == 16


# =============================================================================
# IMPORT PIPELINE
# =============================================================================


class TestImportExcel:

    def test_dry_run_touches_nothing(self, client, auth_headers):
        resp = _upload(client, auth_headers, _xlsx(GENERIC_ROWS), dryRun="true")

        assert resp.status_code == 200
        data = resp.json["data"]
        assert data["status"] == "dry-run"
        assert data["stats"]["totalRows"] == 2
        assert data["stats"]["validRows"] == 2
        assert data["operations"] == []
        assert data["rows"][0]["flowerName"] == "Freedom"
        assert data["warnings"][0]["message"] == "Name normalized to Title Case"
        assert db.session.query(Flower).count() == 0
        supply = db.session.get(Supply, data["supplyId"])
        assert {row["outcome"] for row in supply.rows} == {"skipped"}

    def test_import_creates_catalog(self, client, auth_headers):
        resp = _upload(client, auth_headers, _xlsx(GENERIC_ROWS), exchangeRate="40")

        data = resp.json["data"]
        assert data["status"] == "success"
        assert data["stats"]["flowersCreated"] == 2
        assert data["stats"]["variantsCreated"] == 2
        freedom = _variant("freedom", 60)
        assert freedom.stock == 100
        assert freedom.cost_price == 0.5
        # 0.5 USD * 1.10 margin * 40 UAH/USD
        assert freedom.price == 22.0
        assert freedom.flower.is_published

    def test_existing_variant_keeps_sale_price(self, client, auth_headers, make_flower):
        make_flower("Freedom", [(60, 10, 30.0)])

        resp = _upload(client, auth_headers, _xlsx(GENERIC_ROWS), stockMode="add", exchangeRate="40")

        assert resp.json["data"]["stats"]["flowersUpdated"] == 1
        freedom = _variant("freedom", 60)
        assert freedom.stock == 110
        assert freedom.price == 30.0
        assert freedom.cost_price == 0.5
        update_op = next(op for op in resp.json["data"]["operations"] if op["type"] == "update" and op["entity"] == "variant")
        assert update_op["before"]["stock"] == 10
        assert update_op["after"]["stock"] == 110

    def test_duplicate_file_is_rejected_unless_forced(self, client, auth_headers):
        content = _xlsx(GENERIC_ROWS)
        first = _upload(client, auth_headers, content, exchangeRate="40")

        again = _upload(client, auth_headers, content)
        forced = _upload(client, auth_headers, content, forceImport="true", stockMode="skip")

        assert again.status_code == 409
        error = again.json["error"]
        assert error["code"] == "DUPLICATE_CHECKSUM"
        assert error["message"].startswith("This file was already imported on ")
        assert error["existingSupplyId"] == first.json["data"]["supplyId"]
        assert forced.status_code == 200
        assert _variant("freedom", 60).stock == 100

    def test_dry_run_does_not_block_real_import(self, client, auth_headers):
        content = _xlsx(GENERIC_ROWS)
        _upload(client, auth_headers, content, dryRun="true")
        resp = _upload(client, auth_headers, content, exchangeRate="40")
        assert resp.status_code == 200
        assert resp.json["data"]["status"] == "success"

    def test_rows_for_same_variant_are_aggregated(self, client, auth_headers):
        content = _xlsx([
            ("Variety", "Grade", "Units", "Price"),
            ("Freedom", "60", 100, 0.5),
            ("Freedom", "60", 50, 0.8),
        ])
        resp = _upload(client, auth_headers, content, exchangeRate="40")

        data = resp.json["data"]
        assert data["stats"]["variantsCreated"] == 1
        assert any(w["message"].startswith("Знайдено 2 рядків") for w in data["warnings"])
        freedom = _variant("freedom", 60)
        assert freedom.stock == 150
        assert freedom.cost_price == 0.6

    def test_unknown_grade_becomes_row_error(self, client, auth_headers):
        content = _xlsx([
            ("Variety", "Grade", "Units", "Price"),
            ("Freedom", "60", 100, 0.5),
            ("Mondial", "Extra", 20, 0.7),
        ])
        resp = _upload(client, auth_headers, content, exchangeRate="40")

        data = resp.json["data"]
        assert data["status"] == "success"
        assert data["errors"] == [{
            "row": 3,
            "field": "grade",
            "message": 'Unknown grade "extra", set the length manually',
            "value": "extra",
        }]
        supply = db.session.get(Supply, data["supplyId"])
        assert [row["outcome"] for row in supply.rows] == ["created", "error"]

    def test_row_override_renames_and_sets_length(self, client, auth_headers):
        content = _xlsx([("Variety", "Grade", "Units", "Price"), ("Mondial", "Extra", 20, 0.7)])
        preview = _upload(client, auth_headers, content, dryRun="true").json["data"]
        row_hash = preview["rows"][0]["hash"]

        resp = _upload(
            client, auth_headers, content, exchangeRate="40",
            rowOverrides=json.dumps({row_hash: {"flowerName": "mondial white", "length": 50}}),
        )

        assert resp.json["data"]["status"] == "success"
        assert _variant("mondial-white", 50).stock == 20

    def test_full_cost_mode(self, client, auth_headers):
        resp = _upload(client, auth_headers, _xlsx(ROSS_ROWS), dryRun="true", costCalculationMode="full")

        rows = resp.json["data"]["rows"]
        assert rows[0]["price"] == 0.93
        breakdown = rows[0]["original"]["_fullCostCalculation"]
        assert breakdown["basePrice"] == 0.4
        assert breakdown["airPerStem"] == 0.2
        assert breakdown["truckPerStem"] == 0.25
        assert rows[1]["price"] == 1.03

    def test_missing_file(self, client, auth_headers):
        resp = client.post("/api/imports/excel", data={}, headers=auth_headers, content_type="multipart/form-data")
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "MISSING_FILE"

    def test_legacy_xls_is_rejected(self, client, auth_headers):
        resp = _upload(client, auth_headers, b"\xd0\xcf\x11\xe0legacy", filename="old.xls")
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_FORMAT"
        assert "Detected extension: xls" in resp.json["error"]["message"]

    @pytest.mark.parametrize(
        "fields",
        [
            {"rowOverrides": "{broken"},
            {"rowOverrides": "[1, 2]"},
            {"stockMode": "merge"},
            {"costCalculationMode": "magic"},
            {"salePriceMarginPercent": "nan"},
        ],
    )
    def test_invalid_options(self, client, auth_headers, fields):
        resp = _upload(client, auth_headers, _xlsx(GENERIC_ROWS), **fields)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_INPUT"

    def test_header_only_file(self, client, auth_headers):
        resp = _upload(client, auth_headers, _xlsx([("Variety", "Grade", "Units", "Price")]))
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "VALIDATION_FAILED"


class TestFollowUps:

    def test_update_prices(self, client, auth_headers, rose):
        variant = rose.variants[0]
        resp = client.post("/api/imports/update-prices", json={"prices": [
            {"documentId": variant.document_id, "price": 99.5},
            {"documentId": "missing", "price": 10},
            {"documentId": variant.document_id, "price": -1},
        ]}, headers=auth_headers)

        assert resp.json == {"success": True, "updated": 1}
        assert _variant("troyanda-chervona", 60).price == 99.5

    def test_update_prices_requires_list(self, client, auth_headers):
        resp = client.post("/api/imports/update-prices", json={"prices": []}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["message"] == "Prices array is required"

    def test_get_import(self, client, auth_headers):
        supply_id = _upload(client, auth_headers, _xlsx(GENERIC_ROWS), dryRun="true").json["data"]["supplyId"]

        resp = client.get(f"/api/imports/{supply_id}", headers=auth_headers)
        missing = client.get("/api/imports/9999", headers=auth_headers)

        assert resp.json["data"]["supplyStatus"] == "dry-run"
        assert resp.json["data"]["user"] == "users:1"
        assert missing.status_code == 404

    def test_service_checks_magic_bytes(self):
        assert import_service.is_xlsx(_xlsx(GENERIC_ROWS))
        assert not import_service.is_xlsx(b"Variety;Grade;Units;Price")
