"""Extraction template and output schema models.

Templates are tenant configuration and read-only to the pipeline. They are
validated on construction: every pattern must compile, ``multiline`` needs
an item delimiter, and ``tabular`` needs at least one data pattern with at
least one column.

Pattern flags use the compact letter form found in stored templates
("gim"). ``g`` carries no meaning here because the mode decides whether a
pattern is applied once or globally.
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from noticeflow.config.domain_policy import TemplateDomain
from noticeflow.errors import TemplateValidationError

_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "g": 0, "u": 0, "y": 0}


class ExtractionMode(str, Enum):
    SINGLE = "single"
    MULTILINE = "multiline"
    TABULAR = "tabular"


class Transform(str, Enum):
    TRIM = "trim"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    NUMBER = "number"
    DECIMAL = "decimal"
    DATE = "date"


_TRANSFORM_ALIASES = {"upper": "uppercase", "lower": "lowercase"}


def parse_flags(flags: str) -> int:
    """Translate letter flags into ``re`` flags. Unknown letters are rejected."""
    value = 0
    for letter in flags or "":
        if letter not in _FLAG_MAP:
            raise ValueError(f"Unsupported regex flag '{letter}'")
        value |= _FLAG_MAP[letter]
    return value


@lru_cache(maxsize=512)
def compile_pattern(pattern: str, flags: str = "") -> re.Pattern[str]:
    return re.compile(pattern, parse_flags(flags))


def _check_pattern(pattern: str, flags: str) -> None:
    try:
        compile_pattern(pattern, flags)
    except re.error as exc:
        raise ValueError(f"Invalid regex '{pattern}': {exc}") from exc


def _normalize_transform(value: Any) -> Any:
    if isinstance(value, str):
        return _TRANSFORM_ALIASES.get(value.lower(), value.lower())
    return value


class FieldRule(BaseModel):
    """One named field: first match of ``pattern``, capture group, transform."""

    name: str = Field(min_length=1)
    pattern: str
    flags: str = ""
    capture_group: int = Field(default=1, alias="group", ge=0)
    transform: Transform | None = None
    required: bool = False
    default: str | float | bool | None = Field(default=None, alias="defaultValue")

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("transform", mode="before")
    @classmethod
    def _transform_alias(cls, value: Any) -> Any:
        return _normalize_transform(value)

    @model_validator(mode="after")
    def _pattern_compiles(self) -> FieldRule:
        _check_pattern(self.pattern, self.flags)
        return self


class TabularColumn(BaseModel):
    group: int = Field(ge=0)
    name: str = Field(min_length=1)
    transform: Transform | None = None

    model_config = {"frozen": True}

    @field_validator("transform", mode="before")
    @classmethod
    def _transform_alias(cls, value: Any) -> Any:
        return _normalize_transform(value)


class TabularPattern(BaseModel):
    """A row pattern applied globally; each match becomes one item."""

    name: str | None = None
    pattern: str
    flags: str = "gm"
    columns: list[TabularColumn] = Field(min_length=1)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _pattern_compiles(self) -> TabularPattern:
        _check_pattern(self.pattern, self.flags)
        return self


class ExtractionTemplate(BaseModel):
    mode: ExtractionMode
    item_delimiter: str | None = Field(default=None, alias="itemDelimiter")
    fields: list[FieldRule] = Field(default_factory=list)
    data_patterns: list[TabularPattern] = Field(default_factory=list, alias="dataPatterns")
    defaults: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "populate_by_name": True}

    @model_validator(mode="after")
    def _mode_requirements(self) -> ExtractionTemplate:
        if self.mode == ExtractionMode.TABULAR:
            if not self.data_patterns:
                raise ValueError("tabular mode requires at least one data pattern")
            return self
        if not self.fields:
            raise ValueError(f"{self.mode.value} mode requires at least one field")
        if self.mode == ExtractionMode.MULTILINE and not self.item_delimiter:
            raise ValueError("multiline mode requires itemDelimiter")
        return self


class OutputSchema(BaseModel):
    fingerprint_fields: list[str] = Field(min_length=1, alias="fingerprintFields")
    field_mapping: dict[str, str] = Field(default_factory=dict, alias="fieldMapping")

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("fingerprint_fields")
    @classmethod
    def _dedupe_fields(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class TemplateScrapingConfig(BaseModel):
    enabled: bool = False
    url_field: str = "sourceUrl"
    template_domains: list[TemplateDomain] = Field(default_factory=list, alias="templateDomains")

    model_config = {"frozen": True, "populate_by_name": True}


class ParsingTemplate(BaseModel):
    """A tenant's complete template: matching filters, extraction, output."""

    id: str
    tenant_id: str
    name: str
    sender_filter: str = Field(default="", alias="senderEmail")
    subject_filter: str | None = Field(default=None, alias="subjectFilter")
    is_active: bool = True
    extraction: ExtractionTemplate = Field(alias="extractionConfig")
    output: OutputSchema = Field(alias="outputSchema")
    scraping: TemplateScrapingConfig = Field(
        default_factory=TemplateScrapingConfig, alias="webScrapingConfig"
    )

    model_config = {"frozen": True, "populate_by_name": True}


def load_template(payload: dict[str, Any]) -> ParsingTemplate:
    """Validate a stored template document, raising ``TemplateValidationError``."""
    try:
        return ParsingTemplate.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise TemplateValidationError(problems) from exc


NECO_TEMPLATE = ExtractionTemplate(
    mode=ExtractionMode.MULTILINE,
    item_delimiter="NECO SOLICITATION NUMBER:",
    fields=[
        FieldRule(
            name="solicitationNumber",
            pattern=r"NECO SOLICITATION NUMBER:\s*([A-Z0-9]+)",
            flags="i",
            transform=Transform.TRIM,
            required=True,
        ),
        FieldRule(
            name="site",
            pattern=r"SITE:\s*([A-Z]+)",
            flags="i",
            transform=Transform.UPPERCASE,
            default="NECO",
        ),
        FieldRule(
            name="closingDate",
            pattern=r"CLOSING DATE:\s*([A-Za-z]+\s+\d{1,2},?\s+\d{4})",
            flags="i",
            transform=Transform.DATE,
        ),
        FieldRule(name="sourceUrl", pattern=r"HYPERLINK:\s*([^\s]+)", flags="i", transform=Transform.TRIM),
        FieldRule(name="nsn", pattern=r"National Stock Number:\s*([0-9-]+)", flags="i", transform=Transform.TRIM),
        FieldRule(name="description", pattern=r"Nomenclature:\s*([^\n]+)", flags="i", transform=Transform.TRIM),
        FieldRule(
            name="partNumber",
            pattern=r"Vendor['’]s Part Number:\s*([^\n]+)",
            flags="i",
            transform=Transform.TRIM,
        ),
    ],
)

NECO_SCHEMA = OutputSchema(
    fingerprint_fields=["solicitationNumber", "site"],
    field_mapping={
        "solicitationNumber": "solicitation_number",
        "site": "site",
        "closingDate": "closing_date",
        "sourceUrl": "source_url",
        "nsn": "nsn",
        "description": "description",
        "partNumber": "part_number",
    },
)
