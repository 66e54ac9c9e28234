from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any, Dict, List, Optional, Tuple

from belief_blueprint import report_paths
from belief_blueprint.blob_store import BlobStore

logger = logging.getLogger(__name__)

LIST_PAGE_MAX = 1000

@dataclass
class StoredReport:
    report_id: str
    owner: str
    json_url: str
    html_url: str

def _items(values: Optional[List[Any]]) -> str:
    if not values:
        return "<p class=\"muted\">None detected.</p>"
    return "<ul>" + "".join(f"<li>{escape(str(v))}</li>" for v in values) + "</ul>"

def render_report_html(analysis: Dict[str, Any], meta: Optional[Dict[str, Any]] = None) -> str:
    meta = meta or {}
    title = meta.get("title") or "Belief Blueprint Report"
    prepared_for = meta.get("prepared_for") or ""
    prepared_by = meta.get("prepared_by") or ""

    beliefs = []
    for i, b in enumerate(analysis.get("limiting_beliefs") or [], start=1):
        conf = b.get("confidence")
        conf_txt = f" (confidence {round(conf * 100)}%)" if isinstance(conf, (int, float)) else ""
        evidence = [e.get("snippet", "") for e in b.get("evidence_from_responses") or []]
        beliefs.append(f"<section><h3>{i}. {escape(str(b.get('belief', '')))}{conf_txt}</h3>{_items(evidence)}</section>")

    byline = " &middot; ".join(
        escape(s) for s in [f"Prepared for {prepared_for}" if prepared_for else "", f"by {prepared_by}" if prepared_by else ""] if s
    )
    return (
        "<!doctype html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head><body>"
        f"<h1>{escape(title)}</h1>"
        f"<p>{byline}</p>"
        f"<h2>Summary</h2><p>{escape(str(analysis.get('summary') or ''))}</p>"
        f"<h2>Salient themes</h2>{_items(analysis.get('salient_themes'))}"
        f"<h2>Limiting beliefs</h2>{''.join(beliefs) or _items([])}"
        f"<h2>Language patterns</h2>{_items(analysis.get('language_patterns'))}"
        f"<h2>Recommendations</h2>{_items(analysis.get('recommendations'))}"
        f"<footer>{escape(str(meta.get('footer_note') or ''))}</footer>"
        "</body></html>"
    )

async def store_report(store: BlobStore, analysis: Dict[str, Any], meta: Optional[Dict[str, Any]], now: datetime) -> StoredReport:
    meta = meta or {}
    owner = report_paths.owner_key(
        (meta.get("prepared_by") or "").strip() or (meta.get("prepared_for") or "").strip() or "anon"
    )
    report_id = report_paths.report_id_for(int(now.timestamp() * 1000))

    json_blob = await store.put_json(
        report_paths.encode(owner, report_id, "json"),
        {"report_id": report_id, "meta": meta, "analysis": analysis},
    )
    html_blob = await store.put(
        report_paths.encode(owner, report_id, "html"),
        render_report_html(analysis, meta),
        "text/html; charset=utf-8",
    )
    logger.info("stored report %s for %s", report_id, owner)
    return StoredReport(report_id=report_id, owner=owner, json_url=json_blob.url, html_url=html_blob.url)

async def list_reports(store: BlobStore, base_url: str, owner: str = "", limit: int = LIST_PAGE_MAX, cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """One page of blobs grouped into report rows, newest first."""
    owner = owner.strip().lower()
    page = await store.list(prefix=report_paths.owner_prefix(owner), limit=limit, cursor=cursor)

    rows: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for b in page.blobs:
        parsed = report_paths.decode(b.pathname)
        if parsed is None or (owner and parsed.owner != owner):
            continue
        row = rows.setdefault((parsed.owner, parsed.report_id), {
            "owner": parsed.owner,
            "report_id": parsed.report_id,
            "viewer_url": f"{base_url}/report/view/{parsed.report_id}",
            "ts": parsed.ts,
        })
        row[f"{parsed.ext}_url"] = b.url

    items = sorted(rows.values(), key=lambda r: r["ts"], reverse=True)
    return items, page.cursor

async def find_report_html(store: BlobStore, report_id: str) -> Optional[str]:
    """Pathname of the stored HTML for ``report_id`` under any owner."""
    report_id = report_id.lower()
    cursor = None
    while True:
        page = await store.list(prefix=report_paths.REPORTS_PREFIX, limit=LIST_PAGE_MAX, cursor=cursor)
        for b in page.blobs:
            parsed = report_paths.decode(b.pathname)
            if parsed and parsed.report_id == report_id and parsed.ext == "html":
                return b.pathname
        if not page.cursor:
            return None
        cursor = page.cursor
