import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from bs4 import BeautifulSoup

from config import Config

logger = logging.getLogger(__name__)

# failure kinds carried on SiteResponse / SummaryResult
TRANSPORT = "transport"
PROTOCOL = "protocol"
CONFIGURATION = "configuration"


@dataclass
class SiteResponse:
    ok: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    failure: Optional[str] = None
    elapsed_ms: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def size(self) -> int:
        return len(self.text.encode("utf-8")) if self.text else 0


def parse_generator(html: str) -> Optional[str]:
    """WordPress version advertised by the <meta name="generator"> tag, if any."""
    soup = BeautifulSoup(html or "", "html.parser")
    meta = soup.find("meta", attrs={"name": "generator"})
    content = meta.get("content", "") if meta else ""
    if content.lower().startswith("wordpress"):
        parts = content.split()
        return parts[1] if len(parts) > 1 else None
    return None


class SiteClient:
    """HTTP access to a managed site.

    Every call is a single request with a fixed timeout and no retries.
    Failures come back as SiteResponse values and never raise.
    """

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": config.user_agent})

    def endpoint(self, site_url: str, operation: str) -> str:
        return f"{site_url.rstrip('/')}/wp-json/{self.config.api_namespace}/{operation.lstrip('/')}"

    def _auth(self, site) -> Dict[str, str]:
        return {"Authorization": f"Bearer {site.api_key}"}

    def _request(self, method: str, url: str, *, decode_json=True, **kwargs) -> SiteResponse:
        start = time.monotonic()
        try:
            r = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            elapsed = round((time.monotonic() - start) * 1000)
            logger.info("could not reach %s: %s", url, e)
            return SiteResponse(ok=False, error=f"Could not reach site: {e}", failure=TRANSPORT,
                                elapsed_ms=elapsed)
        elapsed = round((time.monotonic() - start) * 1000)
        resp = SiteResponse(ok=200 <= r.status_code < 300, status_code=r.status_code, elapsed_ms=elapsed,
                            headers=dict(r.headers), text=r.text)
        if decode_json:
            try:
                resp.data = r.json()
            except ValueError:
                resp.ok = False
                resp.failure = PROTOCOL
                resp.error = f"Invalid JSON response (HTTP {r.status_code})"
                return resp
        if not resp.ok:
            resp.failure = PROTOCOL
            message = None
            if isinstance(resp.data, dict):
                message = resp.data.get("error") or resp.data.get("message")
            resp.error = message or f"HTTP {r.status_code}"
        return resp

    def ping(self, url: str) -> SiteResponse:
        """Plain GET of the home page; any status code is a successful transport."""
        resp = self._request("GET", url, decode_json=False, timeout=self.config.read_timeout,
                             verify=self.config.verify_uptime_tls)
        if resp.failure == PROTOCOL:
            # the caller classifies status codes itself
            resp.failure = None
            resp.error = None
        return resp

    def wp_api(self, site) -> SiteResponse:
        url = f"{site.url.rstrip('/')}/wp-json/wp/v2/"
        return self._request("GET", url, decode_json=False, headers=self._auth(site),
                             timeout=self.config.read_timeout)

    def get(self, site, operation: str) -> SiteResponse:
        return self._request("GET", self.endpoint(site.url, operation), headers=self._auth(site),
                             timeout=self.config.read_timeout)

    def post(self, site, operation: str, body: Dict[str, Any], timeout: Optional[int] = None) -> SiteResponse:
        return self._request("POST", self.endpoint(site.url, operation), headers=self._auth(site), json=body,
                             timeout=timeout or self.config.read_timeout)

    def site_info(self, site) -> SiteResponse:
        return self.get(site, "site-info")

    def health(self, site) -> SiteResponse:
        return self.get(site, "health")

    def updates(self, site) -> SiteResponse:
        return self.get(site, "updates")

    def apply_update(self, site, update: Dict[str, Any]) -> SiteResponse:
        return self.post(site, "update", update, timeout=self.config.update_timeout)

    def create_backup(self, site, backup_type: str) -> SiteResponse:
        return self.post(site, "backup", {"type": backup_type}, timeout=self.config.backup_timeout)

    def connect(self, site_url: str, connection_key: str) -> SiteResponse:
        return self._request("POST", self.endpoint(site_url, "connect"), json={"connection_key": connection_key},
                             timeout=self.config.read_timeout)
