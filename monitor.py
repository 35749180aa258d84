import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from classifier import aggregate_status, classify_http_code, classify_latency
from site_client import TRANSPORT, parse_generator

logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    status: str
    response_time: Optional[int] = None
    response_code: Optional[int] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return asdict(self)


class SiteMonitor:
    """Runs the uptime, API and performance checks for managed sites."""

    def __init__(self, store, client, config, sleep=time.sleep):
        self.store = store
        self.client = client
        self.config = config
        self.sleep = sleep

    def check_uptime(self, site) -> CheckOutcome:
        r = self.client.ping(site.url)
        if r.failure == TRANSPORT:
            return CheckOutcome("down", response_time=r.elapsed_ms, error=r.error)
        status = classify_http_code(r.status_code)
        error = None if status == "up" else f"HTTP {r.status_code}"
        return CheckOutcome(status, response_time=r.elapsed_ms, response_code=r.status_code, error=error)

    def check_api(self, site) -> CheckOutcome:
        r = self.client.wp_api(site)
        if r.failure == TRANSPORT:
            return CheckOutcome("error", error=r.error)
        if r.status_code != 200:
            return CheckOutcome("error", response_code=r.status_code,
                                error=f"API not accessible: HTTP {r.status_code}")
        info = self.client.site_info(site)
        data = info.data if info.ok and isinstance(info.data, dict) else {}
        return CheckOutcome("up", response_code=r.status_code, details={
            "wp_version": data.get("wp_version"),
            "php_version": data.get("php_version"),
            "plugins_count": data.get("plugins_count", 0),
            "themes_count": data.get("themes_count", 0),
        })

    def check_performance(self, site) -> CheckOutcome:
        r = self.client.ping(site.url)
        if r.failure == TRANSPORT:
            return CheckOutcome("error", response_time=r.elapsed_ms, error=r.error)
        encoding = {k.lower(): v for k, v in r.headers.items()}.get("content-encoding", "")
        return CheckOutcome(classify_latency(r.elapsed_ms), response_time=r.elapsed_ms,
                            response_code=r.status_code, details={
                                "load_time": r.elapsed_ms,
                                "page_size": r.size,
                                "gzip_enabled": "gzip" in encoding,
                                "generator_version": parse_generator(r.text),
                            })

    def check_site(self, site_id):
        site = self.store.get_site(site_id)
        if not site:
            return None

        results = {
            "uptime": self.check_uptime(site),
            "api": self.check_api(site),
            "performance": self.check_performance(site),
        }
        status = aggregate_status(r.status for r in results.values())

        api = results["api"].details
        wp_version = api.get("wp_version") or results["performance"].details.get("generator_version")
        self.store.update_site_status(site.id, status, wp_version=wp_version, php_version=api.get("php_version"))

        for check_type, r in results.items():
            self.store.log_check(site.id, check_type, r.status, r.response_time, r.response_code, r.error)

        logger.info("site %s (%s) checked: %s", site.id, site.url, status)
        return {"status": status, "results": {k: v.to_dict() for k, v in results.items()}}

    def check_all_sites(self):
        """Check every active site, one after another with a pause in between."""
        summary = {"checked": 0, "failed": 0, "aborted": False}
        try:
            sites = self.store.get_sites("active")
        except SQLAlchemyError as e:
            logger.error("site check batch skipped, store unavailable: %s", e)
            summary["aborted"] = True
            return summary

        for i, site in enumerate(sites):
            if i:
                self.sleep(self.config.check_pause)
            try:
                self.check_site(site.id)
                summary["checked"] += 1
            except SQLAlchemyError as e:
                logger.error("site check batch stopped at site %s, store unavailable: %s", site.id, e)
                summary["aborted"] = True
                break
            except Exception:
                logger.exception("check failed for site %s", site.id)
                summary["failed"] += 1
        return summary
