# Persistence and export of finished scan reports

import json
import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from consentscan.models import ScanReport

TABLE = "scan_reports"
REPORT_COLUMNS = [
    "scanned_url",
    "generated_at",
    "pages_scanned_count",
    "consent_banner_detected",
    "compliance",
    "summary",
    "consent_signals",
    "cookies",
    "trackers",
    "storage",
]


def _db_value(v):
    if isinstance(v, (dict, list, tuple)):
        return json.dumps(v)
    if isinstance(v, bool):
        return json.dumps(v)
    return v


def store_scan_report(
    report: ScanReport,
    results_db_file: Optional[str] = "scan_results.db",
    file: Optional[str] = None,
    table_name: str = TABLE,
    include_screenshot: bool = False,
):
    """Append the report to a JSON-lines file and/or a row in an SQLite table of TEXT columns."""
    data = report.to_dict()
    if not include_screenshot:
        data.pop("screenshot_base64", None)

    if file is not None:
        Path(file).parent.mkdir(parents=True, exist_ok=True)
        with open(file, "a", encoding="utf-8") as f:
            f.write(json.dumps(data) + "\n")

    if results_db_file is not None:
        Path(results_db_file).parent.mkdir(parents=True, exist_ok=True)
        cols = list(REPORT_COLUMNS)
        if include_screenshot:
            cols.append("screenshot_base64")
        conn = sqlite3.connect(results_db_file)
        try:
            c = conn.cursor()
            c.execute(f"CREATE TABLE IF NOT EXISTS {table_name} ({','.join([f'{k} TEXT' for k in REPORT_COLUMNS + ['screenshot_base64']])})")
            logging.info(f"Storing report for {report.scanned_url} in {results_db_file}")
            placeholders = ",".join(["?"] * len(cols))
            c.execute(
                f"INSERT INTO {table_name} ({','.join(cols)}) VALUES ({placeholders})",
                [_db_value(data.get(k)) for k in cols],
            )
            conn.commit()
        finally:
            conn.close()


def load_scan_reports(results_db_file: str, table_name: str = TABLE) -> List[Dict]:
    conn = sqlite3.connect(results_db_file)
    try:
        cur = conn.execute(f'SELECT {", ".join(REPORT_COLUMNS)} FROM "{table_name}"')
        rows = []
        for r in cur.fetchall():
            row = {}
            for i, c in enumerate(REPORT_COLUMNS):
                try:
                    row[c] = json.loads(r[i]) if isinstance(r[i], str) and c not in ("scanned_url", "generated_at") else r[i]
                except json.JSONDecodeError:
                    row[c] = r[i]
            rows.append(row)
        return rows
    finally:
        conn.close()


def report_frames(report: ScanReport) -> Dict[str, pd.DataFrame]:
    """One DataFrame per technology kind, list columns joined for flat export."""
    data = report.to_dict()
    frames = {}
    for kind in ("cookies", "trackers", "storage"):
        df = pd.DataFrame(data[kind])
        for col in ("states", "pages_found"):
            if col in df.columns:
                df[col] = df[col].apply(lambda v: "; ".join(v or []))
        frames[kind] = df
    return frames


def export_csvs(report: ScanReport, out_dir: str) -> List[Path]:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    written = []
    for kind, df in report_frames(report).items():
        path = out / f"{kind}.csv"
        df.to_csv(path, index=False)
        written.append(path)
    logging.info(f"Wrote {len(written)} CSV file(s) to {out}")
    return written


def fmt_pages(urls: List[str], limit: int = 5) -> List[str]:
    if not urls:
        return []
    head = urls[:limit]
    lines = [f"    • {u}" for u in head]
    if len(urls) > limit:
        lines.append(f"    • … (+{len(urls) - limit} more)")
    return lines


def render_text(report: ScanReport, show_compliant: bool = False) -> str:
    s = report.summary
    lines = [
        f"Scan of {report.scanned_url} ({report.generated_at})",
        f"Pages scanned: {report.pages_scanned_count}",
        f"Consent banner detected: {'yes' if report.consent_banner_detected else 'no'}",
        f"Items: {len(report.cookies)} cookies, {len(report.trackers)} trackers, {len(report.storage)} storage",
        f"Violations: {s.pre_consent_violations} pre-consent, {s.post_rejection_violations} post-rejection",
        "",
    ]
    if report.consent_signals:
        found = [k for k, v in report.consent_signals.items() if v]
        lines.append(f"Consent signals: {', '.join(found) if found else 'none'}")
        lines.append("")

    for reg, info in report.compliance.items():
        lines.append(f"{reg.upper()} risk: {info.risk_level.value}")
        lines.append(f"  {info.assessment}")
    lines.append("")

    sections = [
        ("Cookies", report.cookies, lambda c: f"{c.name} ({c.provider}, {c.party}-party, {c.expiry})"),
        ("Trackers", report.trackers, lambda t: f"{t.hostname} {t.url}"),
        ("Storage", report.storage, lambda st: f"{st.name} ({st.origin}, {st.area})"),
    ]
    for title, rows, label in sections:
        shown = [r for r in rows if show_compliant or r.compliance_status != "Compliant"]
        lines.append(f"{title}: {len(shown)} of {len(rows)} shown")
        if not shown:
            lines.append("<none>")
        for r in shown:
            lines.append(f"* {label(r)}")
            lines.append(f"  - category: {r.category}")
            lines.append(f"  - status: {r.compliance_status}")
            lines.append(f"  - states: {', '.join(r.states)}")
            if r.purpose:
                lines.append(f"  - purpose: {r.purpose}")
            if r.compliance_status != "Compliant":
                lines.append(f"  - remediation: {r.remediation}")
            pages = fmt_pages(r.pages_found)
            if pages:
                lines.append("  - seen_at_urls:")
                lines.extend(pages)
        lines.append("")
    return "\n".join(lines)
