"""Field Extraction Engine.

Contract:
- ``extract(text, template, schema)`` returns one ExtractedItem per item found
- Pattern and transform failures are recovered per field with the rule default
- Tabular items are de-duplicated by fingerprint within one document

MUST NOT:
- Raise on a failed field, missing required field, or bad tabular pattern
- Perform I/O
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel

from noticeflow.errors import ExtractionError
from noticeflow.extraction.fingerprint import generate_fingerprint
from noticeflow.extraction.template import (
    ExtractionMode,
    ExtractionTemplate,
    FieldRule,
    OutputSchema,
    ParsingTemplate,
    TabularPattern,
    compile_pattern,
)
from noticeflow.extraction.transforms import Scalar, transform_value
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class ExtractedItem(BaseModel):
    """One candidate notice pulled from a message body. Never persisted as-is."""

    data: dict[str, Any]
    fingerprint: str
    raw: str

    model_config = {"frozen": True}

    def is_empty(self) -> bool:
        return all(value is None for value in self.data.values())


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_items(body: str, delimiter: str | None) -> list[str]:
    """Split ahead of every delimiter occurrence, dropping blank fragments."""
    if not delimiter:
        return [body]
    parts = re.split(f"(?={delimiter})", body)
    return [part for part in parts if part.strip()]


def _apply_rule(text: str, rule: FieldRule) -> Scalar:
    try:
        match = compile_pattern(rule.pattern, rule.flags).search(text)
        if match is None:
            if rule.required:
                logger.warning("Required field %r not found in text", rule.name)
            return rule.default
        raw = match.group(rule.capture_group)
    except (re.error, IndexError) as exc:
        raise ExtractionError(f"field {rule.name!r}: {exc}") from exc

    if raw is None:
        return rule.default
    if not raw or rule.transform is None:
        return raw
    value = transform_value(raw, rule.transform)
    return rule.default if value is None else value


def extract_fields(text: str, rules: list[FieldRule]) -> dict[str, Scalar]:
    result: dict[str, Scalar] = {}
    for rule in rules:
        try:
            result[rule.name] = _apply_rule(text, rule)
        except ExtractionError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.FIELD_EXTRACTION_FAILED,
                message=str(exc),
                suppressed=True,
                details={"field": rule.name},
            )
            result[rule.name] = rule.default
    return result


def _extract_tabular(body: str, patterns: list[TabularPattern], defaults: dict[str, Any], schema: OutputSchema) -> list[ExtractedItem]:
    items: list[ExtractedItem] = []
    seen: set[str] = set()

    for table in patterns:
        try:
            regex = compile_pattern(table.pattern, table.flags)
            for match in regex.finditer(body):
                data: dict[str, Any] = dict(defaults)
                for column in table.columns:
                    raw = match.group(column.group)
                    value = transform_value(raw, column.transform) if raw else raw
                    data[column.name] = value if value not in ("", None) else None

                fingerprint = generate_fingerprint(data, schema.fingerprint_fields, match.group(0))
                if fingerprint in seen:
                    continue
                seen.add(fingerprint)
                items.append(ExtractedItem(data=data, fingerprint=fingerprint, raw=match.group(0)))
        except (re.error, IndexError) as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.TABULAR_PATTERN_INVALID,
                message=str(exc),
                suppressed=True,
                details={"pattern": table.name or "unnamed"},
            )

    logger.info("Tabular parsing: %d items from %d pattern(s)", len(items), len(patterns))
    return items


def extract(text: str, template: ExtractionTemplate, schema: OutputSchema) -> list[ExtractedItem]:
    """Apply a template to a message body."""
    body = normalize_newlines(text)

    if template.mode == ExtractionMode.SINGLE:
        data = extract_fields(body, template.fields)
        return [ExtractedItem(data=data, fingerprint=generate_fingerprint(data, schema.fingerprint_fields, body), raw=body)]

    if template.mode == ExtractionMode.MULTILINE:
        items = []
        for fragment in split_items(body, template.item_delimiter):
            data = extract_fields(fragment, template.fields)
            fingerprint = generate_fingerprint(data, schema.fingerprint_fields, fragment)
            items.append(ExtractedItem(data=data, fingerprint=fingerprint, raw=fragment))
        return items

    return _extract_tabular(body, template.data_patterns, template.defaults, schema)


def matches_template(sender: str, subject: str, template: ParsingTemplate) -> bool:
    """Whether a message is addressed to this template by sender and subject."""
    if template.sender_filter and template.sender_filter.lower() not in sender.lower():
        return False
    if template.subject_filter and template.subject_filter not in subject:
        return False
    return True
