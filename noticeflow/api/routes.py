"""REST API routes for Noticeflow operations.

Provides endpoints for:
- Tenant scraping settings and domain policies
- Scraping statistics, manual scrapes and offline reprocessing
- Fingerprint ledger lookups
- Pausing, resuming and draining a tenant's fetch lane
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from noticeflow.api.auth import require_tenant
from noticeflow.api.runtime import PipelineRuntime
from noticeflow.config.domain_policy import DomainPolicy

router = APIRouter()

_runtime = PipelineRuntime()


def get_runtime() -> PipelineRuntime:
    return _runtime


# --- Request/Response Models ---


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""

    min_delay_ms: int | None = Field(default=None, ge=1000, le=60000)
    max_delay_ms: int | None = Field(default=None, ge=1000, le=60000)
    global_timeout_ms: int | None = Field(default=None, ge=5000, le=120000)
    max_retries: int | None = Field(default=None, ge=1, le=10)
    retry_delay_ms: int | None = Field(default=None, ge=500, le=30000)
    auto_scrape_on_sync: bool | None = None


class DomainUpsert(BaseModel):
    domain: str = Field(min_length=1)
    enabled: bool
    requires_auth: bool = False
    reason: str | None = None
    timeout_ms: int | None = Field(default=30000, ge=1000, le=120000)
    custom_headers: dict[str, str] = Field(default_factory=dict)


class FingerprintCheckRequest(BaseModel):
    fingerprints: list[str] = Field(min_length=1)


def _public_policy(policy: DomainPolicy) -> dict[str, Any]:
    return policy.model_dump(exclude={"credentials"})


# --- Scraping settings ---


@router.get("/scraping/settings")
async def get_settings(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    return runtime.tenant_config.get_settings(tenant_id).model_dump()


@router.put("/scraping/settings")
async def update_settings(
    update: SettingsUpdate,
    tenant_id: str = Depends(require_tenant),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    changes = update.model_dump(exclude_none=True)
    return runtime.tenant_config.update_settings(tenant_id, changes).model_dump()


@router.get("/scraping/statistics")
async def get_statistics(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    return await runtime.orchestrator.get_statistics(tenant_id)


@router.post("/scraping/records/{record_id}")
async def scrape_record(
    record_id: str,
    tenant_id: str = Depends(require_tenant),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Scrape one record now, outside the tenant's fetch lane."""
    result = await runtime.orchestrator.scrape(tenant_id, record_id)
    return {
        "success": result.success,
        "status": result.status.value,
        "error": result.error,
        "is_cancellation": result.is_cancellation,
        "attempts": result.attempts,
        "scraped_at": result.scraped_at.isoformat(),
    }


@router.post("/scraping/reprocess")
async def reprocess(
    tenant_id: str = Depends(require_tenant),
    runtime: PipelineRuntime = Depends(get_runtime),
    only_failed: bool = Query(default=False, alias="onlyFailed"),
    limit: int | None = Query(default=None, ge=1),
) -> dict[str, Any]:
    return await runtime.reprocess(
        tenant_id,
        limit=limit or runtime.config.pipeline.reprocess_limit,
        only_failed=only_failed,
    )


# --- Domain policies ---


@router.get("/scraping/domains")
async def list_domains(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> list[dict[str, Any]]:
    runtime.tenant_config.initialize_default_domains(tenant_id)
    return [_public_policy(policy) for policy in runtime.tenant_config.list_domains(tenant_id)]


@router.put("/scraping/domains")
async def upsert_domain(
    request: DomainUpsert,
    tenant_id: str = Depends(require_tenant),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    try:
        policy = DomainPolicy(**request.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _public_policy(runtime.tenant_config.upsert_domain(tenant_id, policy))


@router.delete("/scraping/domains/{domain}")
async def remove_domain(
    domain: str,
    tenant_id: str = Depends(require_tenant),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> dict[str, str]:
    if not runtime.tenant_config.remove_domain(tenant_id, domain):
        raise HTTPException(status_code=404, detail=f"Domain {domain} not configured")
    return {"message": "Domain config removed"}


# --- Fingerprints ---


@router.post("/fingerprints/check")
async def check_fingerprints(
    request: FingerprintCheckRequest,
    tenant_id: str = Depends(require_tenant),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    results = await runtime.ledger.check_many(tenant_id, request.fingerprints)
    return {fp: result.model_dump(mode="json") for fp, result in results.items()}


@router.get("/fingerprints/statistics")
async def fingerprint_statistics(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    return await runtime.ledger.get_statistics(tenant_id)


# --- Fetch lanes ---


@router.post("/lanes/drain")
async def drain_lane(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    lane = runtime.lanes.get(tenant_id)
    drained = await lane.drain("Drained by operator") if lane else 0
    return {"tenant_id": tenant_id, "drained": drained}


@router.post("/lanes/pause")
async def pause_lane(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    lane = runtime.lanes.lane(tenant_id)
    lane.pause()
    return {"tenant_id": tenant_id, "paused": True, "pending": lane.pending}


@router.post("/lanes/resume")
async def resume_lane(
    tenant_id: str = Depends(require_tenant), runtime: PipelineRuntime = Depends(get_runtime)
) -> dict[str, Any]:
    lane = runtime.lanes.lane(tenant_id)
    lane.resume()
    return {"tenant_id": tenant_id, "paused": False, "pending": lane.pending}
