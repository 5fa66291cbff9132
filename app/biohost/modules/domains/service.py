from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime
from typing import TYPE_CHECKING, Any

import dns.exception
import dns.resolver

from app.biohost import entitlements
from app.biohost.audit import record_event
from app.biohost.modules.domains.models import TXT_RECORD_PREFIX, Domain
from app.biohost.utils import clean, get_owned, is_http_url, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.biohost.models import User


logger = logging.getLogger(__name__)

DOMAIN_RE = re.compile(r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$", re.IGNORECASE)
RESERVED_DOMAINS = (
    "host.uk.com",
    "bio.host.uk.com",
    "link.host.uk.com",
    "social.host.uk.com",
    "analytics.host.uk.com",
    "trust.host.uk.com",
    "notify.host.uk.com",
    "lnktr.fyi",
)
DEFAULT_CNAME_TARGET = "bio.host.uk.com"
DNS_TIMEOUT = 5.0


class DomainVerificationError(RuntimeError):
    pass


def normalise_host(host: str | None) -> str:
    host = (host or "").strip().lower()
    host = re.sub(r"^https?://", "", host)
    return host.rstrip("/")


def validate_domain_format(host: str | None) -> bool:
    host = normalise_host(host)
    if not host or len(host) > 253:
        return False
    return bool(DOMAIN_RE.match(host))


def is_domain_reserved(host: str | None) -> bool:
    host = normalise_host(host)
    return any(host == r or host.endswith("." + r) for r in RESERVED_DOMAINS)


def cname_target() -> str:
    from flask import current_app, has_app_context

    if has_app_context():
        return current_app.config.get("DOMAIN_CNAME_TARGET") or DEFAULT_CNAME_TARGET
    return DEFAULT_CNAME_TARGET


# ---------- DNS lookups ----------
def _resolver() -> dns.resolver.Resolver:
    r = dns.resolver.Resolver()
    r.lifetime = DNS_TIMEOUT
    return r


def _txt_records(host: str) -> list[str]:
    try:
        answer = _resolver().resolve(host, "TXT")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return []
    return ["".join(part.decode("utf-8", "replace") for part in rdata.strings) for rdata in answer]


def _cname_record(host: str) -> str | None:
    try:
        answer = _resolver().resolve(host, "CNAME")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return None
    for rdata in answer:
        return rdata.target.to_text()
    return None


def _a_records(host: str) -> list[str]:
    try:
        answer = _resolver().resolve(host, "A")
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
        return []
    return [rdata.address for rdata in answer]


def verify_txt_record(domain: Domain) -> bool:
    if not domain.verification_token:
        return False
    try:
        records = _txt_records(domain.txt_record_host)
    except dns.exception.DNSException as e:
        logger.warning("TXT lookup failed for %s: %s", domain.host, e)
        return False
    expected = domain.txt_record_value
    return any(r.strip().strip('"') == expected for r in records)


def verify_cname(domain: Domain) -> bool:
    try:
        target = _cname_record(domain.host)
    except dns.exception.DNSException as e:
        logger.warning("CNAME lookup failed for %s: %s", domain.host, e)
        return False
    if not target:
        return False
    return target.rstrip(".").lower() == cname_target().rstrip(".").lower()


def check_dns_resolution(host: str) -> dict[str, Any]:
    """Diagnostics only; never used to decide verification."""
    result: dict[str, Any] = {"resolves": False, "ip_addresses": [], "cname": None, "txt_records": []}
    try:
        cname = _cname_record(host)
        if cname:
            result["cname"] = cname.rstrip(".")
        ips = _a_records(host)
        result["ip_addresses"] = ips
        result["resolves"] = bool(ips)
        result["txt_records"] = _txt_records(f"{TXT_RECORD_PREFIX}.{host}")
    except dns.exception.DNSException as e:
        logger.info("DNS resolution check failed for %s: %s", host, e)
    return result


def dns_instructions(domain: Domain) -> dict[str, dict[str, str]]:
    target = cname_target()
    return {
        "cname": {
            "type": "CNAME",
            "host": domain.host,
            "target": target,
            "description": f"Point your domain to {target}",
        },
        "txt": {
            "type": "TXT",
            "host": domain.txt_record_host,
            "value": domain.txt_record_value,
            "description": "Add a TXT record to verify domain ownership",
        },
    }


# ---------- Operations ----------
def _new_token() -> str:
    return secrets.token_hex(16)


def validate_domain_payload(s: "Session", payload: dict) -> list[str]:
    host = normalise_host(payload.get("host"))
    if not host:
        return ["Domain is required."]
    if not validate_domain_format(host):
        return ["Please enter a valid domain name (e.g. links.example.com)."]
    if is_domain_reserved(host):
        return ["This domain is reserved and cannot be used."]
    if s.query(Domain.id).filter(Domain.host == host).first() is not None:
        return ["This domain is already registered."]
    return []


def add_domain(s: "Session", payload: dict, user: "User") -> Domain:
    entitlements.require(s, user, "bio.domains")
    now = datetime.utcnow()
    domain = Domain(
        user_id=user.id,
        host=normalise_host(payload.get("host")),
        scheme="https",
        is_enabled=False,
        verification_status="pending",
        verification_token=_new_token(),
        created_at=now,
        updated_at=now,
    )
    s.add(domain)
    s.flush()

    record_event(
        s,
        actor=user,
        action="domain.create",
        entity_type="Domain",
        entity_id=str(domain.id),
        metadata={"host": domain.host},
    )
    return domain


def verify_domain(s: "Session", domain: Domain, user: "User") -> bool:
    """TXT first, then CNAME. Marks the domain verified or failed."""
    method = None
    if verify_txt_record(domain):
        method = "txt"
    elif verify_cname(domain):
        method = "cname"

    now = datetime.utcnow()
    if method:
        domain.verification_status = "verified"
        domain.verified_at = now
        logger.info("Domain %s verified via %s", domain.host, method)
    else:
        domain.verification_status = "failed"
        logger.info("Domain %s verification failed", domain.host)
    domain.updated_at = now

    record_event(
        s,
        actor=user,
        action="domain.verify",
        entity_type="Domain",
        entity_id=str(domain.id),
        metadata={"host": domain.host, "status": domain.verification_status, "method": method},
    )
    return method is not None


def regenerate_token(s: "Session", domain: Domain, user: "User") -> Domain:
    domain.verification_token = _new_token()
    domain.verification_status = "pending"
    domain.verified_at = None
    domain.is_enabled = False
    domain.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="domain.regenerate_token",
        entity_type="Domain",
        entity_id=str(domain.id),
        metadata={"host": domain.host},
    )
    return domain


def toggle_domain(s: "Session", domain: Domain, user: "User") -> Domain:
    if not domain.is_enabled and not domain.is_verified:
        raise DomainVerificationError(f"Verify {domain.host} before enabling it.")
    domain.is_enabled = not domain.is_enabled
    domain.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="domain.toggle",
        entity_type="Domain",
        entity_id=str(domain.id),
        metadata={"host": domain.host, "is_enabled": domain.is_enabled},
    )
    return domain


def validate_domain_settings(s: "Session", payload: dict, user: "User") -> list[str]:
    from app.biohost.modules.biolinks.models import BioLink

    errors = []
    biolink_id = parse_int(payload.get("biolink_id"))
    if biolink_id is not None and get_owned(s, BioLink, biolink_id, user) is None:
        errors.append("Default page not found.")
    for key, label in (("custom_index_url", "Index URL"), ("custom_not_found_url", "Not found URL")):
        value = clean(payload.get(key))
        if value and not is_http_url(value):
            errors.append(f"{label} must be a valid http(s) URL.")
    return errors


def update_domain_settings(s: "Session", domain: Domain, payload: dict, user: "User") -> Domain:
    changes = {}
    new_biolink_id = parse_int(payload.get("biolink_id"))
    if new_biolink_id != domain.biolink_id:
        changes["biolink_id"] = {"old": domain.biolink_id, "new": new_biolink_id}
        domain.biolink_id = new_biolink_id
    for key in ("custom_index_url", "custom_not_found_url"):
        new_value = clean(payload.get(key))
        if new_value != getattr(domain, key):
            changes[key] = {"old": getattr(domain, key), "new": new_value}
            setattr(domain, key, new_value)
    domain.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="domain.edit",
        entity_type="Domain",
        entity_id=str(domain.id),
        metadata={"host": domain.host, "changes": changes},
    )
    return domain


def delete_domain(s: "Session", domain: Domain, user: "User") -> dict[str, str]:
    """
    Detach the domain's pages into the default namespace, then delete it.
    A page whose slug is already taken there gets the next free -copy slug.
    Returns {old slug: new slug} for the renamed pages.
    """
    from app.biohost.modules.biolinks.models import BioLink
    from app.biohost.modules.biolinks.service import copy_slug, slug_available

    renamed: dict[str, str] = {}
    detached = s.query(BioLink).filter(BioLink.domain_id == domain.id).order_by(BioLink.id.asc()).all()
    for biolink in detached:
        if not slug_available(s, biolink.url, None):
            new_slug = copy_slug(s, biolink.url, None)
            logger.info("Domain %s removed: /%s renamed to /%s", domain.host, biolink.url, new_slug)
            renamed[biolink.url] = new_slug
            biolink.url = new_slug
        biolink.domain_id = None
        s.flush()

    record_event(
        s,
        actor=user,
        action="domain.delete",
        entity_type="Domain",
        entity_id=str(domain.id),
        metadata={"host": domain.host, "biolinks_detached": len(detached), "renamed": renamed},
    )
    domain.biolink_id = None
    s.flush()
    s.delete(domain)
    s.flush()
    return renamed


def resolve_request_domain(s: "Session", host: str, allowed_hosts: tuple[str, ...]) -> tuple[bool, Domain | None]:
    """
    Map a request Host header to a namespace. Returns (known, domain):
    allowed hosts are (True, None); an enabled verified custom domain is
    (True, domain); anything else is (False, None).
    """
    host = normalise_host(host.split(":", 1)[0])
    if host in allowed_hosts:
        return True, None
    domain = (
        s.query(Domain)
        .filter(Domain.host == host, Domain.is_enabled.is_(True), Domain.verification_status == "verified")
        .one_or_none()
    )
    return domain is not None, domain
