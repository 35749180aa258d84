"""Client-friendly report summaries from an external text-generation API."""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config import Config
from site_client import CONFIGURATION, PROTOCOL, TRANSPORT

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"
CONNECTION_PHRASE = "SiteHerd connection successful"

REPORT_PROMPT = """You are a WordPress maintenance expert writing a report summary for a non-technical client.

Convert the following technical maintenance data into a clear, friendly explanation that a business owner can understand. Focus on:
1. What was done to maintain their website
2. Any security improvements made
3. Performance optimizations
4. Issues that were fixed
5. Overall health status

Technical Data:
{data}

Write a professional but friendly summary for {site} that:
- Uses simple language (avoid technical jargon)
- Explains the business value of the maintenance work
- Mentions any issues that were resolved
- Keep it concise (2-3 paragraphs maximum)

Format the response as clean text without markdown or special formatting."""


@dataclass
class SummaryResult:
    success: bool
    summary: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


class Summarizer:
    """Messages-API client. Never raises; every failure is a SummaryResult."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.config.summarizer_api_key) and self.config.summarizer_enabled

    def build_prompt(self, snapshot: Dict[str, Any], site_name: str = "") -> str:
        return REPORT_PROMPT.format(
            data=json.dumps(snapshot, indent=2, sort_keys=True, default=str),
            site=site_name or "your website",
        )

    def summarize(self, snapshot: Dict[str, Any], site_name: str = "") -> SummaryResult:
        if not self.is_configured():
            return SummaryResult(False, error="Summarizer is not configured", failure=CONFIGURATION)
        return self._call(self.build_prompt(snapshot, site_name))

    def test_connection(self) -> SummaryResult:
        if not self.config.summarizer_api_key:
            return SummaryResult(False, error="No API key provided", failure=CONFIGURATION)
        result = self._call(f"Respond with exactly: '{CONNECTION_PHRASE}'")
        if result.success and CONNECTION_PHRASE not in result.summary:
            return SummaryResult(False, error="Unexpected response from summarizer", failure=PROTOCOL)
        return result

    def _call(self, prompt: str) -> SummaryResult:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.config.summarizer_api_key,
            "anthropic-version": API_VERSION,
        }
        payload = {
            "model": self.config.summarizer_model,
            "max_tokens": self.config.summarizer_max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            response = self.session.post(self.config.summarizer_url, json=payload, headers=headers,
                                         timeout=self.config.summarizer_timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("summarizer request failed: %s", e)
            return SummaryResult(False, error=str(e), failure=TRANSPORT)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            err = data.get("error") if isinstance(data, dict) else None
            message = err.get("message", "Unknown error") if isinstance(err, dict) else (err or "Unknown error")
            logger.warning("summarizer API error %s: %s", response.status_code, message)
            return SummaryResult(False, error=f"API Error: {message}", failure=PROTOCOL)

        try:
            text = data["content"][0]["text"].strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            logger.error("summarizer returned an unexpected body")
            return SummaryResult(False, error="Invalid response format from summarizer", failure=PROTOCOL)

        return SummaryResult(True, summary=text, usage=data.get("usage"))
