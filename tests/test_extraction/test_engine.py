"""Tests for the field extraction engine and template validation."""

from datetime import datetime, timezone

import pytest

from noticeflow.errors import TemplateValidationError
from noticeflow.extraction.engine import extract, matches_template, split_items
from noticeflow.extraction.template import (
    NECO_SCHEMA,
    NECO_TEMPLATE,
    ExtractionMode,
    ExtractionTemplate,
    FieldRule,
    OutputSchema,
    load_template,
)

NECO_EMAIL = (
    "NECO SOLICITATION NUMBER: N0010425QA001\r\n"
    "SITE: neco\r\n"
    "CLOSING DATE: March 16, 2099\r\n"
    "HYPERLINK: https://neco.navy.mil/synopsis/detail.aspx?id=1\r\n"
    "National Stock Number: 5340-01-123-4567\r\n"
    "Nomenclature: VALVE ASSEMBLY\r\n"
    "\r\n"
    "NECO SOLICITATION NUMBER: N0010425QA002\r\n"
    "CLOSING DATE: Mar 17 2099\r\n"
    "HYPERLINK: https://neco.navy.mil/synopsis/detail.aspx?id=2\r\n"
)


class TestMultilineExtraction:
    def test_one_item_per_delimiter(self):
        items = extract(NECO_EMAIL, NECO_TEMPLATE, NECO_SCHEMA)
        assert [item.data["solicitationNumber"] for item in items] == ["N0010425QA001", "N0010425QA002"]

    def test_fields_are_transformed(self):
        first = extract(NECO_EMAIL, NECO_TEMPLATE, NECO_SCHEMA)[0]
        assert first.data["site"] == "NECO"
        assert first.data["closingDate"] == datetime(2099, 3, 16, tzinfo=timezone.utc)
        assert first.data["description"] == "VALVE ASSEMBLY"
        assert first.data["partNumber"] is None

    def test_missing_field_uses_rule_default(self):
        second = extract(NECO_EMAIL, NECO_TEMPLATE, NECO_SCHEMA)[1]
        assert second.data["site"] == "NECO"
        assert second.data["nsn"] is None

    def test_fragment_fingerprints_differ(self):
        first, second = extract(NECO_EMAIL, NECO_TEMPLATE, NECO_SCHEMA)
        assert first.fingerprint != second.fingerprint
        assert first.raw.startswith("NECO SOLICITATION NUMBER: N0010425QA001")

    def test_same_item_same_fingerprint_across_messages(self):
        again = NECO_EMAIL.replace("VALVE ASSEMBLY", "VALVE ASSY, REWORDED")
        assert extract(NECO_EMAIL, NECO_TEMPLATE, NECO_SCHEMA)[0].fingerprint == (
            extract(again, NECO_TEMPLATE, NECO_SCHEMA)[0].fingerprint
        )

    def test_text_before_first_delimiter_is_its_own_fragment(self):
        assert split_items("Header\nA: 1\nA: 2", "A:") == ["Header\n", "A: 1\n", "A: 2"]

    def test_blank_fragments_dropped(self):
        assert split_items("A: 1\n", "A:") == ["A: 1\n"]

    def test_fragments_rejoin_to_body(self):
        body = NECO_EMAIL.replace("\r\n", "\n")
        assert "".join(split_items(body, "NECO SOLICITATION NUMBER:")).strip() == body.strip()


class TestSingleExtraction:
    def test_single_mode_returns_one_item(self):
        template = ExtractionTemplate(
            mode=ExtractionMode.SINGLE,
            fields=[
                FieldRule(name="po", pattern=r"PO#\s*(\d+)"),
                FieldRule(name="qty", pattern=r"Qty:\s*(\S+)", transform="number"),
            ],
        )
        schema = OutputSchema(fingerprint_fields=["po"])
        items = extract("PO# 4411\nQty: 1,200 ea", template, schema)
        assert len(items) == 1
        assert items[0].data == {"po": "4411", "qty": 1200.0}

    def test_bad_capture_group_falls_back_to_default(self):
        template = ExtractionTemplate(
            mode=ExtractionMode.SINGLE,
            fields=[FieldRule(name="code", pattern=r"CODE (\w+)", group=3, defaultValue="none")],
        )
        schema = OutputSchema(fingerprint_fields=["code"])
        assert extract("CODE ABC", template, schema)[0].data["code"] == "none"

    def test_all_empty_item_reports_empty(self):
        template = ExtractionTemplate(mode=ExtractionMode.SINGLE, fields=[FieldRule(name="po", pattern=r"PO#\s*(\d+)")])
        schema = OutputSchema(fingerprint_fields=["po"])
        assert extract("nothing here", template, schema)[0].is_empty()


class TestTabularExtraction:
    def test_rows_deduplicated_by_fingerprint(self):
        template = ExtractionTemplate.model_validate(
            {
                "mode": "tabular",
                "dataPatterns": [
                    {
                        "pattern": r"^(\d{4})\s+(\S+)\s+(\d+)$",
                        "columns": [
                            {"group": 1, "name": "lineItem"},
                            {"group": 2, "name": "partNumber", "transform": "upper"},
                            {"group": 3, "name": "quantity", "transform": "number"},
                        ],
                    }
                ],
                "defaults": {"site": "DIBBS"},
            }
        )
        schema = OutputSchema(fingerprint_fields=["lineItem", "partNumber"])
        body = "0001 ab-1 5\n0002 cd-2 7\n0001 AB-1 5\n"
        items = extract(body, template, schema)
        assert [item.data["partNumber"] for item in items] == ["AB-1", "CD-2"]
        assert items[0].data["site"] == "DIBBS"
        assert items[1].data["quantity"] == 7.0


class TestTemplateValidation:
    def test_multiline_requires_delimiter(self):
        with pytest.raises(TemplateValidationError, match="itemDelimiter"):
            load_template(
                {
                    "id": "t",
                    "tenant_id": "tenant-a",
                    "name": "broken",
                    "extractionConfig": {"mode": "multiline", "fields": [{"name": "a", "pattern": "a"}]},
                    "outputSchema": {"fingerprintFields": ["a"]},
                }
            )

    def test_invalid_regex_rejected(self):
        with pytest.raises(ValueError, match="Invalid regex"):
            FieldRule(name="a", pattern="(unclosed")

    def test_unknown_flag_rejected(self):
        with pytest.raises(ValueError, match="Unsupported regex flag"):
            FieldRule(name="a", pattern="a", flags="x")

    def test_tabular_requires_pattern(self):
        with pytest.raises(ValueError):
            ExtractionTemplate(mode=ExtractionMode.TABULAR)


class TestTemplateMatching:
    def test_sender_and_subject_filters(self, neco_template):
        assert matches_template("Notices <no-reply@neco.navy.mil>", "New RFQ", neco_template)
        assert not matches_template("someone@example.com", "New RFQ", neco_template)
