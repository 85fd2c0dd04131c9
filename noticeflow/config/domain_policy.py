"""Domain scraping policy and its tiered resolver.

A fetch is only attempted for hosts with an enabled policy. Resolution is a
pure function over three sources, first present tier wins:

1. template-scoped domains (exact, ``www.``-normalized, or suffix match)
2. tenant overrides (exact host, then parent domain)
3. hardcoded defaults (exact host, parent domain, disabled-substring)

Anything else is denied as an unknown domain.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

UNKNOWN_DOMAIN_REASON = "Unknown domain - not configured"


class DomainPolicy(BaseModel):
    """Per-tenant fetch policy for one hostname."""

    domain: str
    enabled: bool
    requires_auth: bool = False
    timeout_ms: int | None = 30000
    reason: str | None = None
    custom_headers: dict[str, str] = Field(default_factory=dict)
    credentials: dict[str, str] | None = None

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        value = value.strip().lower().rstrip(".")
        if not value:
            raise ValueError("domain cannot be empty")
        return value


class TemplateDomain(BaseModel):
    """Domain entry attached to an extraction template's scraping config."""

    domain: str
    enabled: bool = True
    reason: str | None = None


DEFAULT_DOMAIN_POLICIES: dict[str, DomainPolicy] = {
    "neco.navy.mil": DomainPolicy(domain="neco.navy.mil", enabled=True, timeout_ms=30000),
}


@dataclass(frozen=True)
class ResolvedPolicy:
    policy: DomainPolicy
    tier: str


def extract_host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def parent_domain(host: str) -> str | None:
    """Last two labels of a host with more than two labels."""
    parts = host.split(".")
    if len(parts) > 2:
        return ".".join(parts[-2:])
    return None


def _template_match(host: str, entry: TemplateDomain) -> bool:
    normalized = host.removeprefix("www.")
    domain = entry.domain.lower()
    return (
        domain in (host, normalized, f"www.{normalized}")
        or host.endswith(f".{domain}")
        or host == f"www.{domain}"
    )


def resolve_domain_policy(
    host: str,
    *,
    template_domains: list[TemplateDomain] | None = None,
    tenant_policies: Mapping[str, DomainPolicy] | None = None,
    defaults: Mapping[str, DomainPolicy] | None = None,
    default_timeout_ms: int = 30000,
) -> ResolvedPolicy:
    """Resolve the effective policy for ``host`` without any I/O."""
    host = host.lower()
    defaults = DEFAULT_DOMAIN_POLICIES if defaults is None else defaults
    parent = parent_domain(host)

    for entry in template_domains or []:
        if _template_match(host, entry):
            return ResolvedPolicy(
                DomainPolicy(
                    domain=entry.domain,
                    enabled=entry.enabled,
                    timeout_ms=default_timeout_ms,
                    reason=entry.reason,
                ),
                tier="template",
            )

    if tenant_policies:
        if host in tenant_policies:
            return ResolvedPolicy(tenant_policies[host], tier="tenant")
        if parent and parent in tenant_policies:
            return ResolvedPolicy(tenant_policies[parent], tier="tenant_parent")

    if host in defaults:
        return ResolvedPolicy(defaults[host], tier="default")
    if parent and parent in defaults:
        return ResolvedPolicy(defaults[parent], tier="default_parent")

    for domain, policy in defaults.items():
        if domain in host and not policy.enabled:
            return ResolvedPolicy(policy, tier="default_blocked")

    return ResolvedPolicy(
        DomainPolicy(domain=host or "unknown", enabled=False, timeout_ms=None, reason=UNKNOWN_DOMAIN_REASON),
        tier="deny",
    )
