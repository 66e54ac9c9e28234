from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

REPORTS_PREFIX = "reports/"
EXTENSIONS = ("html", "json", "pdf")

_FILENAME = re.compile(r"^(rpt-(\d+))(?:-[^.]+)?\.(html|json|pdf)$", re.IGNORECASE)
_REPORT_ID = re.compile(r"^rpt-\d+$", re.IGNORECASE)
_OWNER_UNSAFE = re.compile(r"[^a-z0-9]+")

@dataclass(frozen=True)
class ReportPath:
    owner: str
    report_id: str
    ext: str
    ts: int

def owner_key(raw: Optional[str]) -> str:
    key = _OWNER_UNSAFE.sub("-", (raw or "").strip().lower()).strip("-")
    return key or "anon"

def report_id_for(millis: int) -> str:
    return f"rpt-{millis}"

def is_report_id(value: str) -> bool:
    return bool(_REPORT_ID.match(value or ""))

def owner_prefix(owner: str = "") -> str:
    return f"{REPORTS_PREFIX}{owner}/" if owner else REPORTS_PREFIX

def encode(owner: str, report_id: str, ext: str) -> str:
    if ext not in EXTENSIONS:
        raise ValueError(f"unsupported report extension: {ext}")
    if not is_report_id(report_id):
        raise ValueError(f"not a report id: {report_id}")
    return f"{REPORTS_PREFIX}{owner_key(owner)}/{report_id.lower()}.{ext}"

def decode(pathname: str) -> Optional[ReportPath]:
    """Parse a report blob path; None for anything that is not one."""
    parts = [p for p in str(pathname or "").split("/") if p]
    try:
        ix = parts.index("reports")
    except ValueError:
        return None
    if ix + 2 >= len(parts):
        return None

    owner = parts[ix + 1].lower()
    m = _FILENAME.match("/".join(parts[ix + 2:]))
    if not owner or not m:
        return None
    return ReportPath(owner=owner, report_id=m.group(1).lower(), ext=m.group(3).lower(), ts=int(m.group(2)))
