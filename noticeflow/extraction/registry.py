"""In-memory registry of tenant parsing templates."""

from __future__ import annotations

import logging
from typing import Any

from noticeflow.extraction.engine import matches_template
from noticeflow.extraction.template import ParsingTemplate, load_template

logger = logging.getLogger(__name__)


class TemplateRegistry:
    """Holds validated ``ParsingTemplate`` objects keyed by (tenant, id)."""

    def __init__(self) -> None:
        self._templates: dict[tuple[str, str], ParsingTemplate] = {}

    def register(self, template: ParsingTemplate | dict[str, Any]) -> ParsingTemplate:
        if not isinstance(template, ParsingTemplate):
            template = load_template(template)
        self._templates[(template.tenant_id, template.id)] = template
        logger.info("Template %s registered for tenant %s", template.id, template.tenant_id)
        return template

    def get(self, tenant_id: str, template_id: str | None) -> ParsingTemplate | None:
        if template_id is None:
            return None
        return self._templates.get((tenant_id, template_id))

    def list_active(self, tenant_id: str) -> list[ParsingTemplate]:
        return [t for (tenant, _), t in self._templates.items() if tenant == tenant_id and t.is_active]

    def match(self, tenant_id: str, sender: str, subject: str) -> ParsingTemplate | None:
        """First active template whose sender and subject filters accept the message."""
        for template in self.list_active(tenant_id):
            if matches_template(sender, subject, template):
                return template
        return None
