import logging
import math
import os
import re
from datetime import date, datetime
from html import escape

from models import CHECK_TYPES, utcnow

logger = logging.getLogger(__name__)


def process_monitoring(rows):
    """Per check type: totals, up counts, uptime percentage and mean response time."""
    processed = {t: {"total_checks": 0, "up_checks": 0} for t in CHECK_TYPES}
    times = {t: [] for t in CHECK_TYPES}
    for row in rows:
        if row.check_type not in processed:
            continue
        processed[row.check_type]["total_checks"] += 1
        if row.status == "up":
            processed[row.check_type]["up_checks"] += 1
        if row.response_time is not None:
            times[row.check_type].append(row.response_time)

    for t, data in processed.items():
        total = data["total_checks"]
        data["uptime_percentage"] = round(data["up_checks"] / total * 100, 2) if total else 0.0
        data["average_response_time"] = round(sum(times[t]) / len(times[t]), 2) if times[t] else 0.0
    return processed


def _tally(rows):
    return {"completed": sum(1 for r in rows if r["status"] == "completed"), "total": len(rows)}


def calculate_summary(data):
    uptime = data["monitoring"]["uptime"]
    return {
        "uptime_percentage": uptime["uptime_percentage"],
        "average_response_time": uptime["average_response_time"],
        "updates": _tally(data["updates"]),
        "backups": _tally(data["backups"]),
    }


def collect_technical_data(store, site, period_start, period_end):
    checks = store.get_checks(site.id, period_start, period_end)
    updates = store.get_updates(site.id, period_start, period_end)
    backups = store.get_backups(site.id, period_start, period_end)

    data = {
        "site_info": {
            "name": site.name,
            "url": site.url,
            "wp_version": site.wp_version,
            "php_version": site.php_version,
            # latest check run only, not the period
            "current_status": site.status,
        },
        "period": {"start": period_start.isoformat(), "end": period_end.isoformat()},
        "monitoring": process_monitoring(checks),
        "updates": [_strip(u.to_dict()) for u in updates],
        "backups": [_strip(b.to_dict()) for b in backups],
    }
    data["summary"] = calculate_summary(data)
    return data


def _strip(row):
    row.pop("id", None)
    row.pop("site_id", None)
    return row


def format_file_size(num_bytes):
    if not num_bytes:
        return "0 B"
    if num_bytes < 1024:
        return f"{num_bytes} B"
    units = ("B", "KB", "MB", "GB")
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(units) - 1)
    return f"{round(num_bytes / 1024 ** i, 2)} {units[i]}"


def _long_date(d):
    return f"{d:%B} {d.day}, {d.year}"


def _short_date(value):
    d = datetime.fromisoformat(value)
    return f"{d:%b} {d.day}, {d.year}"


def _num(value):
    # two decimals at most, matching the stored figures
    if isinstance(value, float):
        return f"{value:.2f}".rstrip("0").rstrip(".")
    return str(value)


def slugify(text):
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "site"


STYLE = """
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 800px; margin: 0 auto; padding: 20px; }}
        .header {{ text-align: center; border-bottom: 3px solid {color}; padding-bottom: 20px; margin-bottom: 30px; }}
        .header h1, .section h2 {{ color: {color}; }}
        .summary-box {{ background: #f8f9fa; border: 1px solid #dee2e6; border-radius: 5px; padding: 20px; }}
        .stats-grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr)); gap: 15px; }}
        .stat-item {{ text-align: center; border: 1px solid #ddd; border-radius: 5px; padding: 15px; }}
        .stat-number {{ font-size: 2em; font-weight: bold; color: {color}; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }}
        .success {{ color: #28a745; }}
        .error {{ color: #dc3545; }}
"""


def render_html(site, data, narrative, period_start, period_end, generated_at,
                company_name="SiteHerd", primary_color="#2271b1"):
    summary = data["summary"]
    monitoring = data["monitoring"]
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '    <meta charset="utf-8">',
        f"    <title>Website Maintenance Report - {escape(site.name)}</title>",
        f"    <style>{STYLE.format(color=escape(primary_color))}    </style>",
        "</head>",
        "<body>",
        '<div class="header">',
        "    <h1>Website Maintenance Report</h1>",
        f"    <p><strong>{escape(company_name)}</strong></p>",
        f"    <p>Site: {escape(site.name)}</p>",
        f"    <p>Period: {_long_date(period_start)} - {_long_date(period_end)}</p>",
        f"    <p>Generated: {_long_date(generated_at)} at {generated_at:%H:%M}</p>",
        "</div>",
    ]

    if narrative:
        body = "<br>\n".join(escape(line) for line in narrative.splitlines())
        parts += ['<div class="section">', "    <h2>Executive Summary</h2>",
                  f'    <div class="summary-box">{body}</div>', "</div>"]

    stats = [
        (f"{_num(summary['uptime_percentage'])}%", "Uptime"),
        (f"{summary['updates']['completed']}/{summary['updates']['total']}", "Updates Applied"),
        (f"{summary['backups']['completed']}/{summary['backups']['total']}", "Backups Created"),
        (f"{_num(summary['average_response_time'])}ms", "Avg Response Time"),
    ]
    parts += ['<div class="section">', "    <h2>Summary Statistics</h2>", '    <div class="stats-grid">']
    for number, label in stats:
        parts.append(f'        <div class="stat-item"><div class="stat-number">{number}</div>'
                     f'<div class="stat-label">{label}</div></div>')
    parts += ["    </div>", "</div>"]

    up = monitoring["uptime"]
    perf = monitoring["performance"]
    api = monitoring["api"]
    parts += [
        '<div class="section">',
        "    <h2>Website Monitoring</h2>",
        "    <ul>",
        f"        <li>Uptime: {_num(up['uptime_percentage'])}% ({up['up_checks']}/{up['total_checks']} checks passed)</li>",
        f"        <li>Average response time: {_num(up['average_response_time'])}ms</li>",
        f"        <li>API checks: {api['up_checks']}/{api['total_checks']} passed</li>",
        f"        <li>Performance checks: {perf['up_checks']}/{perf['total_checks']} passed</li>",
        "    </ul>",
        "</div>",
    ]

    parts += ['<div class="section">', "    <h2>Updates Applied</h2>"]
    if not data["updates"]:
        parts.append("    <p>No updates were applied during this period.</p>")
    else:
        parts += ["    <table>",
                  "        <tr><th>Component</th><th>Type</th><th>Version</th><th>Status</th><th>Date</th></tr>"]
        for u in data["updates"]:
            css = "success" if u["status"] == "completed" else "error"
            version = f"{escape(u['version_from'] or '?')} &rarr; {escape(u['version_to'] or '?')}"
            parts.append(
                f"        <tr><td>{escape(u['component_name'])}</td>"
                f"<td>{escape(u['component_type'].capitalize())}</td>"
                f"<td>{version}</td>"
                f'<td class="{css}">{escape(u["status"].replace("_", " ").capitalize())}</td>'
                f"<td>{_short_date(u['created_at'])}</td></tr>"
            )
        parts.append("    </table>")
    parts.append("</div>")

    parts += ['<div class="section">', "    <h2>Backups Created</h2>"]
    if not data["backups"]:
        parts.append("    <p>No backups were created during this period.</p>")
    else:
        parts.append(f"    <p>During this period, {len(data['backups'])} backups were created:</p>")
        parts.append("    <ul>")
        for b in data["backups"]:
            css = "success" if b["status"] == "completed" else "error"
            parts.append(
                f"        <li>{escape(b['backup_type'].capitalize())} backup - {format_file_size(b['file_size'])}"
                f" - {_short_date(b['created_at'])}"
                f' (<span class="{css}">{escape(b["status"].capitalize())}</span>)</li>'
            )
        parts.append("    </ul>")
    parts.append("</div>")

    parts += ["</body>", "</html>", ""]
    return "\n".join(parts)


class ReportGenerator:
    """Builds a maintenance report for one site and period."""

    def __init__(self, store, summarizer, config):
        self.store = store
        self.summarizer = summarizer
        self.config = config

    def generate(self, site_id, period_start: date, period_end: date, include_summary=True, generated_at=None):
        site = self.store.get_site(site_id)
        if not site:
            return None

        data = collect_technical_data(self.store, site, period_start, period_end)

        narrative = None
        if include_summary and self.summarizer is not None and self.summarizer.is_configured():
            result = self.summarizer.summarize(data, site.name)
            if result.success:
                narrative = result.summary
            else:
                logger.warning("report for site %s generated without summary: %s", site.id, result.error)

        generated_at = generated_at or utcnow()
        html = render_html(site, data, narrative, period_start, period_end, generated_at,
                           self.config.company_name, self.config.primary_color)

        os.makedirs(self.config.reports_dir, exist_ok=True)
        filename = f"report-{site.id}-{slugify(site.name)}-{period_start.isoformat()}-{period_end.isoformat()}.html"
        file_path = os.path.join(self.config.reports_dir, filename)
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(html)

        report_id = self.store.save_report(site.id, period_start, period_end, data, narrative, file_path)
        return {
            "report_id": report_id,
            "file_path": file_path,
            "summary": data["summary"],
            "ai_summary": narrative,
            "technical_data": data,
            "html": html,
        }
