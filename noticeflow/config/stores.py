"""Tenant-scoped stores for scraping settings and domain policies.

Both stores keep state in memory and, when given a data directory, persist
one JSON document per tenant and hydrate from it on startup.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from noticeflow.config.domain_policy import DEFAULT_DOMAIN_POLICIES, DomainPolicy
from noticeflow.config.settings import ScrapingSettings

logger = logging.getLogger(__name__)


class _TenantDocument(BaseModel):
    settings: ScrapingSettings | None = None
    domains: dict[str, DomainPolicy] = Field(default_factory=dict)


class TenantConfigRepository:
    """Holds ``ScrapingSettings`` and ``DomainPolicy`` rows per tenant."""

    def __init__(self, data_dir: Path | None = None, defaults: ScrapingSettings | None = None) -> None:
        self._data_dir = data_dir
        self._defaults = defaults or ScrapingSettings()
        self._tenants: dict[str, _TenantDocument] = {}
        if self._data_dir is not None:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            self.hydrate_from_disk()

    # --- Scraping settings ---

    def get_settings(self, tenant_id: str) -> ScrapingSettings:
        """Return tenant settings, creating them from defaults on first access."""
        doc = self._document(tenant_id)
        if doc.settings is None:
            doc.settings = self._defaults.model_copy()
            self._persist(tenant_id)
        return doc.settings

    def update_settings(self, tenant_id: str, changes: dict[str, Any]) -> ScrapingSettings:
        current = self.get_settings(tenant_id)
        merged = {**current.model_dump(), **{k: v for k, v in changes.items() if v is not None}}
        updated = ScrapingSettings.model_validate(merged)
        self._document(tenant_id).settings = updated
        self._persist(tenant_id)
        logger.info("Scraping settings updated for tenant %s", tenant_id)
        return updated

    # --- Domain policies ---

    def list_domains(self, tenant_id: str) -> list[DomainPolicy]:
        return sorted(self._document(tenant_id).domains.values(), key=lambda p: p.domain)

    def domain_map(self, tenant_id: str) -> dict[str, DomainPolicy]:
        return dict(self._document(tenant_id).domains)

    def upsert_domain(self, tenant_id: str, policy: DomainPolicy) -> DomainPolicy:
        self._document(tenant_id).domains[policy.domain] = policy
        self._persist(tenant_id)
        return policy

    def remove_domain(self, tenant_id: str, domain: str) -> bool:
        removed = self._document(tenant_id).domains.pop(domain.strip().lower(), None)
        if removed is not None:
            self._persist(tenant_id)
        return removed is not None

    def initialize_default_domains(self, tenant_id: str) -> int:
        """Seed the hardcoded defaults for a tenant with no domain rows yet."""
        doc = self._document(tenant_id)
        if doc.domains:
            return 0
        for domain, policy in DEFAULT_DOMAIN_POLICIES.items():
            doc.domains[domain] = policy.model_copy()
        self._persist(tenant_id)
        return len(DEFAULT_DOMAIN_POLICIES)

    # --- Persistence ---

    def _document(self, tenant_id: str) -> _TenantDocument:
        return self._tenants.setdefault(tenant_id, _TenantDocument())

    def _path(self, tenant_id: str) -> Path | None:
        if self._data_dir is None:
            return None
        return self._data_dir / f"{tenant_id}.json"

    def _persist(self, tenant_id: str) -> None:
        path = self._path(tenant_id)
        if path is None:
            return
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(self._tenants[tenant_id].model_dump_json(indent=2))
        tmp.replace(path)

    def hydrate_from_disk(self) -> None:
        self._tenants.clear()
        if self._data_dir is None or not self._data_dir.exists():
            return
        for path in self._data_dir.glob("*.json"):
            try:
                self._tenants[path.stem] = _TenantDocument.model_validate(json.loads(path.read_text()))
            except ValueError:
                logger.warning("Skipping unreadable tenant config %s", path)
