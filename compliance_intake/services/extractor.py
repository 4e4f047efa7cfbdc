"""
Address and tenant extraction from inbound email text.

A narrow heuristic tuned to the agency emails we receive, not a general
parser. Addresses look like ``12 Smith Street, Richmond VIC 3121``; tenant
details come either as a ``Tenant:`` block with ``Name:``/``Phone:`` lines
or as a single line mentioning the tenant and an Australian mobile number.
"""

import re

from compliance_intake.core.models import ExtractionResult, TenantInfo

STATES = ("VIC", "NSW", "QLD", "ACT", "TAS", "NT", "WA")

ADDRESS_RE = re.compile(
    r"\b\d+[A-Za-z/]*[\w'\- ]*?(?:,\s*)?[A-Za-z'\- ]+(?:,\s*)?"
    r"(?:" + "|".join(STATES) + r")\s*\d{4}\b",
    re.IGNORECASE,
)

MOBILE_RE = re.compile(r"(?:\+61|0)\s?4\d(?:[ \-]?\d){6,}")

NAME_LINE_RE = re.compile(r"^Name:\s*(.*)$", re.IGNORECASE)
PHONE_LINE_RE = re.compile(r"^Phone:\s*(.*)$", re.IGNORECASE)


def extract_addresses(text: str) -> list[str]:
    """Return unique addresses in order of first appearance."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for match in ADDRESS_RE.finditer(text):
        address = " ".join(match.group(0).split())
        if address:
            seen.setdefault(address, None)
    return list(seen)


def _lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _tenant_from_block(lines: list[str]) -> TenantInfo:
    """
    Parse the block form::

        1st Tenant:
        Name: Yuwei Zeng
        Phone: 0434 643 145

    The block starts after the first line containing ``tenant:`` and ends at
    the first line that is neither ``Name:`` nor ``Phone:``.
    """
    name = ""
    phone = ""
    in_block = False

    for line in lines:
        if not in_block:
            if "tenant:" in line.lower():
                in_block = True
            continue

        name_match = NAME_LINE_RE.match(line)
        if name_match:
            name = name_match.group(1).strip()
            continue

        phone_match = PHONE_LINE_RE.match(line)
        if phone_match:
            phone = re.sub(r"\s+", "", phone_match.group(1))
            continue

        break

    return TenantInfo(name=name, phone=phone)


def _tenant_from_line(lines: list[str]) -> TenantInfo:
    """
    Parse single-line forms such as::

        Dikshu KAKKAR (Tenant) - 0466326000
        Tenant Jason May (m) 0411 702 488
    """
    for line in lines:
        if "tenant" not in line.lower():
            continue

        phone_match = MOBILE_RE.search(line)
        if not phone_match:
            continue

        # Separators dropped, hyphens included: "0412-345-678" is stored as "0412345678"
        phone = re.sub(r"[\s\-]", "", phone_match.group(0))

        name = MOBILE_RE.sub("", line, count=1)
        name = re.sub(r"-+", "", name)
        name = re.sub(r"\(tenant\)", "", name, flags=re.IGNORECASE)
        name = re.sub(r"tenant", "", name, flags=re.IGNORECASE)
        name = " ".join(name.split())

        return TenantInfo(name=name, phone=phone)

    return TenantInfo()


def extract_tenant(text: str) -> TenantInfo:
    """
    Find at most one tenant name/phone pair. First pass that yields a phone wins.

    Never raises; returns empty strings when no phone is found.
    """
    if not text:
        return TenantInfo()

    lines = _lines(text)

    tenant = _tenant_from_block(lines)
    if tenant.phone:
        return tenant

    tenant = _tenant_from_line(lines)
    if tenant.phone:
        return tenant

    return TenantInfo()


def extract(subject: str, body: str) -> ExtractionResult:
    """Extract candidate addresses (body first, then subject) and tenant details."""
    addresses = extract_addresses(body)
    for address in extract_addresses(subject):
        if address not in addresses:
            addresses.append(address)

    return ExtractionResult(addresses=addresses, tenant=extract_tenant(body))
