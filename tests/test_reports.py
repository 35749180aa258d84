import os
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from reports import ReportGenerator, _num, format_file_size, process_monitoring
from site_client import TRANSPORT
from summarizer import SummaryResult
from tests.fakes import at

START, END = date(2024, 3, 1), date(2024, 3, 31)
STAMP = datetime(2024, 4, 1, 9, 30)


def row(check_type, status, response_time=None):
    return SimpleNamespace(check_type=check_type, status=status, response_time=response_time)


def test_no_checks_means_zero_uptime():
    result = process_monitoring([])
    for data in result.values():
        assert data == {"total_checks": 0, "up_checks": 0, "uptime_percentage": 0, "average_response_time": 0}


def test_seven_of_ten_is_seventy_percent():
    rows = [row("uptime", "up", 100)] * 7 + [row("uptime", "down", None)] * 3
    uptime = process_monitoring(rows)["uptime"]
    assert uptime["uptime_percentage"] == 70.0
    assert uptime["average_response_time"] == 100.0


def test_mean_ignores_missing_response_times():
    rows = [row("performance", "up", 100), row("performance", "warning", 6000), row("performance", "error", None)]
    perf = process_monitoring(rows)["performance"]
    assert perf["average_response_time"] == 3050.0
    assert perf["total_checks"] == 3
    assert perf["up_checks"] == 1


def test_unknown_check_types_are_ignored():
    assert process_monitoring([row("security", "up", 1)])["uptime"]["total_checks"] == 0


def test_format_file_size():
    assert format_file_size(0) == "0 B"
    assert format_file_size(512) == "512 B"
    assert format_file_size(1023) == "1023 B"
    assert format_file_size(2048) == "2.0 KB"
    assert format_file_size(5 * 1024 ** 2) == "5.0 MB"


@pytest.fixture
def seeded(store, site_id):
    # 8 uptime checks in range, 6 up; plus noise outside the range
    for day in range(1, 9):
        status = "down" if day in (3, 7) else "up"
        store.log_check(site_id, "uptime", status, 200 if status == "up" else None, checked_at=at(day))
    store.log_check(site_id, "api", "up", checked_at=at(2))
    store.log_check(site_id, "uptime", "down", checked_at=datetime(2024, 4, 1, 0, 0))
    store.log_update(site_id, "plugin", "Akismet", "5.0", "5.1", "completed", created_at=at(4))
    store.log_update(site_id, "theme", "Astra <b>", "4.0", "4.1", "failed", "locked", created_at=at(5))
    store.log_backup(site_id, "full", "completed", "/b1.sql", 2048, created_at=at(6))
    store.log_backup(site_id, "incremental", "failed", created_at=at(7))
    store.update_site_status(site_id, "active", wp_version="6.4.2", php_version="8.2.1")
    return site_id


def test_period_summary(store, config, seeded):
    result = ReportGenerator(store, None, config).generate(seeded, START, END, generated_at=STAMP)

    assert result["summary"] == {
        "uptime_percentage": 75.0,
        "average_response_time": 200.0,
        "updates": {"completed": 1, "total": 2},
        "backups": {"completed": 1, "total": 2},
    }
    data = result["technical_data"]
    assert data["monitoring"]["uptime"]["total_checks"] == 8
    assert data["site_info"]["current_status"] == "active"
    assert [u["component_name"] for u in data["updates"]] == ["Astra <b>", "Akismet"]


def test_current_status_is_independent_of_period_uptime(store, config, fake_client, seeded):
    from monitor import SiteMonitor

    # latest run is clean, so the site is active even though the period had downtime
    status = SiteMonitor(store, fake_client, config, sleep=Mock()).check_site(seeded)["status"]
    assert status == "active"
    result = ReportGenerator(store, None, config).generate(seeded, START, END, generated_at=STAMP)
    assert result["summary"]["uptime_percentage"] == 75.0
    assert result["technical_data"]["site_info"]["current_status"] == "active"


def test_report_is_written_and_persisted(store, config, seeded):
    result = ReportGenerator(store, None, config).generate(seeded, START, END, generated_at=STAMP)

    assert os.path.exists(result["file_path"])
    assert result["file_path"].endswith(f"report-{seeded}-shop-2024-03-01-2024-03-31.html")
    with open(result["file_path"], encoding="utf-8") as f:
        html = f.read()
    assert html == result["html"]
    assert "Period: March 1, 2024 - March 31, 2024" in html
    assert "Generated: April 1, 2024 at 09:30" in html
    assert "75%" in html
    assert "Astra &lt;b&gt;" in html
    assert "2.0 KB" in html
    assert "Executive Summary" not in html

    report = store.get_report(result["report_id"])
    assert report.status == "generated"
    assert report.ai_summary is None
    assert report.file_path == result["file_path"]
    assert report.to_dict()["technical_data"]["summary"]["uptime_percentage"] == 75.0


def test_rerun_is_identical(store, config, seeded):
    gen = ReportGenerator(store, None, config)
    first = gen.generate(seeded, START, END, generated_at=STAMP)
    second = gen.generate(seeded, START, END, generated_at=STAMP)
    assert first["technical_data"] == second["technical_data"]
    assert first["html"] == second["html"]
    assert first["report_id"] != second["report_id"]
    assert store.get_report(first["report_id"]).technical_data == store.get_report(second["report_id"]).technical_data


def test_empty_period(store, config, site_id):
    result = ReportGenerator(store, None, config).generate(site_id, date(2023, 1, 1), date(2023, 1, 31))
    assert result["summary"]["uptime_percentage"] == 0
    assert "No updates were applied during this period." in result["html"]
    assert "No backups were created during this period." in result["html"]


def test_unknown_site(store, config):
    assert ReportGenerator(store, None, config).generate(99, START, END) is None


def test_narrative_is_embedded(store, config, seeded):
    summarizer = Mock()
    summarizer.is_configured.return_value = True
    summarizer.summarize.return_value = SummaryResult(True, summary="All good.\nSee you next month & thanks.")

    result = ReportGenerator(store, summarizer, config).generate(seeded, START, END, generated_at=STAMP)

    assert result["ai_summary"] == "All good.\nSee you next month & thanks."
    assert "Executive Summary" in result["html"]
    assert "All good.<br>\nSee you next month &amp; thanks." in result["html"]
    snapshot, name = summarizer.summarize.call_args.args
    assert name == "Shop"
    assert snapshot["summary"]["uptime_percentage"] == 75.0
    assert store.get_report(result["report_id"]).ai_summary == result["ai_summary"]


def test_failing_summarizer_does_not_block_report(store, config, seeded):
    summarizer = Mock()
    summarizer.is_configured.return_value = True
    summarizer.summarize.return_value = SummaryResult(False, error="connection reset", failure=TRANSPORT)

    result = ReportGenerator(store, summarizer, config).generate(seeded, START, END, generated_at=STAMP)

    assert result["report_id"]
    assert result["ai_summary"] is None
    assert result["summary"]["uptime_percentage"] == 75.0
    assert store.get_report(result["report_id"]).ai_summary is None


def test_summary_skipped_when_not_requested(store, config, seeded):
    summarizer = Mock()
    summarizer.is_configured.return_value = True
    ReportGenerator(store, summarizer, config).generate(seeded, START, END, include_summary=False)
    summarizer.summarize.assert_not_called()


def test_numbers_keep_two_decimals():
    assert _num(75.0) == "75"
    assert _num(99.5) == "99.5"
    assert _num(12345.67) == "12345.67"
    assert _num(1234567.0) == "1234567"
    assert _num(3) == "3"


def test_sites_with_same_slug_get_separate_files(store, config, site_id):
    other = store.add_site("https://shop2.example.com", "shop!", "s" * 32)
    gen = ReportGenerator(store, None, config)
    first = gen.generate(site_id, START, END, generated_at=STAMP)
    second = gen.generate(other, START, END, generated_at=STAMP)

    assert first["file_path"] != second["file_path"]
    with open(store.get_report(first["report_id"]).file_path, encoding="utf-8") as f:
        assert "Site: Shop<" in f.read()
    with open(store.get_report(second["report_id"]).file_path, encoding="utf-8") as f:
        assert "Site: shop!<" in f.read()
