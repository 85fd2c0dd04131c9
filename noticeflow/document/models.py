"""Structural document models.

Field names are snake_case in Python and serialize to camelCase, which is the
shape persisted in ``scraped_data["neco"]``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

_CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


class DateReference(BaseModel):
    type: str
    date: str

    model_config = _CAMEL


class SubLineItem(BaseModel):
    """A delivery or ship-to variant of a line item."""

    sub_line_item: str = ""
    quantity: int | None = None
    unit: str | None = None
    unit_price: str | None = None
    priority_rating: str | None = None
    internal_order_number: str | None = None
    mark_for: str | None = None
    condition: str | None = None
    ship_to: str | None = None
    dodaac: str | None = None
    city_state_zip: str | None = None
    product_description: str | None = None
    data_category_code: str | None = None
    date_references: list[DateReference] | None = None
    preparer: str | None = None
    authorizer: str | None = None

    model_config = _CAMEL


class LineItem(BaseModel):
    line_item: str = ""
    nsn: str | None = None
    nomenclature: str | None = None
    material_control_code: str | None = None
    special_material_id_code: str | None = None
    shelf_life_code: str | None = None
    shelf_life_action_code: str | None = None
    vendor_code: str | None = None
    vendor_part_number: str | None = None
    item_description_type: str | None = None
    item_description: str | None = None
    quantity: int | None = None
    unit: str | None = None
    pack_size: int | None = None
    pack_unit: str | None = None
    weight: str | None = None
    volume: str | None = None
    dimensions: str | None = None
    packaging_standard: str | None = None
    packaging_codes: dict[str, str] | None = None
    sow_text: str | None = None
    drawing_numbers: list[str] | None = None
    document_references: list[str] | None = None
    cage_ref_no: str | None = None
    sub_line_items: list[SubLineItem] = Field(default_factory=list)

    model_config = _CAMEL


class ShipToLocation(BaseModel):
    entity: str
    quantity: int | None = None
    lead_time: str | None = None

    model_config = _CAMEL


class CdrlItem(BaseModel):
    """A contract data requirements list entry."""

    cdrl_item: str = ""
    lead_time: str | None = None
    lead_time_days: int | None = None
    agency_qualifier: str | None = None
    code_list_qualifier: str | None = None
    industry_list: str | None = None
    description_type: str | None = None
    title: str | None = None
    subtitle: str | None = None
    reference_numbers: list[str] | None = None
    reference_details: list[str] | None = None
    clause_references: list[str] | None = None
    organization_locations: list[str] | None = None
    ship_to_locations: list[ShipToLocation] | None = None

    model_config = _CAMEL


class StructuralDocument(BaseModel):
    """Everything the structural extractor recovers from one notice page.

    The top-level ``line_item`` ... ``sub_line_items`` fields mirror the first
    entry of ``line_items`` for consumers that predate multi-item documents.
    """

    # Header
    solicitation_number: str | None = None
    trans_purpose: str | None = None
    issue_date: str | None = None
    contract_type: str | None = None
    purchase_category: str | None = None
    tdp_drawings: str | None = None
    documents_url: str | None = None
    synopsis_url: str | None = None
    fbo_document_url: str | None = None

    closing_date: str | None = None
    closing_time: str | None = None
    closing_timezone: str | None = None

    sic_code: str | None = None
    purchase_requisition_no: str | None = None
    dpas_rating: str | None = None

    fob_point: str | None = None
    shipment_payment: str | None = None
    acceptance_point: str | None = None

    set_aside: str | None = None

    lead_time: str | None = None
    lead_time_days: int | None = None

    buyer_entity: str | None = None
    buyer_dodaac: str | None = None
    buyer_city: str | None = None
    buyer_state: str | None = None
    buyer_zip: str | None = None
    buyer_country: str | None = None

    buyer_name: str | None = None
    buyer_email: str | None = None
    buyer_phone: str | None = None
    buyer_fax: str | None = None
    admin_communications: dict[str, str] | None = None

    # Flattened first line item
    line_item: str | None = None
    nomenclature: str | None = None
    quantity: int | None = None
    unit: str | None = None
    nsn: str | None = None
    material_control_code: str | None = None
    special_material_id_code: str | None = None
    shelf_life_code: str | None = None
    fsc: str | None = None
    vendor_code: str | None = None
    vendor_part_number: str | None = None
    cage_ref_no: str | None = None
    sub_line_items: list[SubLineItem] | None = None

    line_items: list[LineItem] = Field(default_factory=list)
    cdrl_items: list[CdrlItem] | None = None
    item_condition: str | None = None
    download_urls: list[str] | None = None
    solicitation_type: Literal["auto", "manual"] | None = None

    is_amendment: bool = False
    is_cancellation: bool = False
    sections_found: list[str] = Field(default_factory=list)
    total_line_items: int = 0
    total_sub_line_items: int = 0

    model_config = _CAMEL

    def to_scraped_dict(self) -> dict[str, Any]:
        """JSON-ready camelCase form with unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
