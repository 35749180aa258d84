import asyncio
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import date
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Config, load_config
from db import Store
from logging_setup import setup_logging
from maintenance import Maintenance
from models import BACKUP_TYPES, CHECK_TYPES
from monitor import SiteMonitor
from reports import ReportGenerator
from site_client import SiteClient
from summarizer import Summarizer

logger = logging.getLogger(__name__)

BACKUP_INTERVALS = {
    "hourly": 3600,
    "twicedaily": 12 * 3600,
    "daily": 24 * 3600,
    "weekly": 7 * 24 * 3600,
}


@dataclass
class AppContext:
    config: Config
    store: Store
    client: SiteClient
    monitor: SiteMonitor
    maintenance: Maintenance
    summarizer: Summarizer
    reports: ReportGenerator


def build_context(config: Config) -> AppContext:
    store = Store(config.database_url)
    store.init_db()
    client = SiteClient(config)
    summarizer = Summarizer(config)
    return AppContext(
        config=config,
        store=store,
        client=client,
        monitor=SiteMonitor(store, client, config),
        maintenance=Maintenance(store, client, config),
        summarizer=summarizer,
        reports=ReportGenerator(store, summarizer, config),
    )


def generate_api_key(length=32):
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def fail(message, status_code):
    return JSONResponse({"success": False, "message": message}, status_code=status_code)


async def _repeat(interval, job, label, lock):
    loop = asyncio.get_running_loop()
    while True:
        await asyncio.sleep(interval)
        try:
            # one batch at a time across loops, blocking work in the executor
            async with lock:
                result = await loop.run_in_executor(None, job)
            logger.info("%s finished: %s", label, result)
        except Exception:
            logger.exception("%s crashed", label)


def create_app(config: Config = None, context: AppContext = None) -> FastAPI:
    config = config or (context.config if context else load_config())
    setup_logging("dashboard", config.log_dir, config.log_level)
    ctx = context or build_context(config)

    app = FastAPI(title="SiteHerd dashboard")
    app.state.ctx = ctx
    tasks = []

    @app.on_event("startup")
    async def startup_event():
        if not config.enable_scheduler:
            return
        backup_every = BACKUP_INTERVALS.get(config.backup_frequency, BACKUP_INTERVALS["daily"])
        lock = asyncio.Lock()
        tasks.append(asyncio.create_task(_repeat(config.monitor_frequency * 60, ctx.monitor.check_all_sites,
                                                 "site checks", lock)))
        tasks.append(asyncio.create_task(_repeat(backup_every, ctx.maintenance.backup_all_sites, "backups", lock)))
        logger.info("scheduler started: checks every %s min, backups %s", config.monitor_frequency,
                    config.backup_frequency)

    @app.on_event("shutdown")
    async def shutdown_event():
        for t in tasks:
            t.cancel()

    # sites

    @app.get("/sites")
    async def list_sites(status: str = None):
        sites = ctx.store.get_sites(status)
        return {"success": True, "sites": [s.to_dict() for s in sites]}

    @app.post("/sites")
    async def add_site(payload: dict):
        name = (payload.get("site_name") or "").strip()
        url = (payload.get("site_url") or "").strip()
        if not name or not url:
            return fail("Site name and URL are required", 400)
        api_key = generate_api_key()
        site_id = ctx.store.add_site(url, name, api_key)
        if not site_id:
            return fail("Failed to add site", 500)
        return JSONResponse({"success": True, "site_id": site_id, "api_key": api_key,
                             "message": "Site added successfully"}, status_code=201)

    @app.delete("/sites/{site_id}")
    async def delete_site(site_id: int):
        if ctx.store.delete_site(site_id):
            return {"success": True, "message": "Site deleted successfully"}
        return fail("Site not found", 404)

    @app.post("/sites/connect")
    async def connect_site(payload: dict):
        url = (payload.get("site_url") or "").strip()
        key = (payload.get("connection_key") or "").strip()
        if not url or not key:
            return fail("Site URL and connection key are required", 400)

        r = await asyncio.get_running_loop().run_in_executor(None, ctx.client.connect, url, key)
        if r.status_code is None:
            return fail(f"Could not connect to site: {r.error}", 500)
        data = r.data if isinstance(r.data, dict) else {}
        if not (r.ok and data.get("success")):
            return fail(data.get("message") or "Connection failed", 400)

        info = data.get("site_info") or {}
        site_id = ctx.store.add_site(url, info.get("name") or urlparse(url).netloc or url, key)
        if not site_id:
            return fail("Failed to save site to database", 500)
        ctx.store.update_site_status(site_id, "active", wp_version=info.get("wp_version"),
                                     php_version=info.get("php_version"))
        return {"success": True, "site_id": site_id, "site_info": info, "message": "Site connected successfully"}

    @app.post("/sites/{site_id}/check")
    async def check_site(site_id: int):
        result = await asyncio.get_running_loop().run_in_executor(None, ctx.monitor.check_site, site_id)
        if result is None:
            return fail("Site not found", 404)
        return {"success": True, "status": result["status"], "results": result["results"],
                "message": "Site checked successfully"}

    @app.get("/sites/{site_id}/history")
    async def site_history(site_id: int, check_type: str = None, limit: int = 100):
        if check_type and check_type not in CHECK_TYPES:
            return fail(f"Unknown check type: {check_type}", 400)
        if not ctx.store.get_site(site_id):
            return fail("Site not found", 404)
        rows = ctx.store.get_checks(site_id, check_type=check_type, limit=limit)
        return {"success": True, "checks": [r.to_dict() for r in rows]}

    # updates and backups

    @app.get("/sites/{site_id}/updates")
    async def available_updates(site_id: int):
        if not ctx.store.get_site(site_id):
            return fail("Site not found", 404)
        updates = await asyncio.get_running_loop().run_in_executor(
            None, ctx.maintenance.get_available_updates, site_id)
        if updates is None:
            return fail("Could not fetch updates from site", 500)
        return {"success": True, "updates": updates}

    @app.post("/sites/{site_id}/updates")
    async def apply_updates(site_id: int, payload: dict):
        updates = payload.get("updates")
        if not isinstance(updates, list) or not updates:
            return fail("A list of updates is required", 400)
        backup_first = bool(payload.get("backup_first", True))
        result = await asyncio.get_running_loop().run_in_executor(
            None, ctx.maintenance.apply_updates, site_id, updates, backup_first)
        if result is None:
            return fail("Site not found", 404)
        return JSONResponse(result, status_code=200 if result["success"] else 500)

    @app.get("/sites/{site_id}/backups")
    async def list_backups(site_id: int, limit: int = 10):
        rows = ctx.store.get_backups(site_id, limit=limit)
        return {"success": True, "backups": [b.to_dict() for b in rows]}

    @app.post("/sites/{site_id}/backups")
    async def create_backup(site_id: int, request: Request):
        payload = await request.json() if await request.body() else {}
        backup_type = payload.get("type", "incremental")
        if backup_type not in BACKUP_TYPES:
            return fail("Backup type must be full or incremental", 400)
        if not ctx.store.get_site(site_id):
            return fail("Site not found", 404)
        backup_id = await asyncio.get_running_loop().run_in_executor(
            None, ctx.maintenance.create_backup, site_id, backup_type)
        if not backup_id:
            return fail("Backup failed", 500)
        return JSONResponse({"success": True, "backup_id": backup_id}, status_code=201)

    @app.get("/backups/stats")
    async def backup_stats(days: int = 30):
        return {"success": True, "stats": ctx.store.backup_stats(days)}

    # reports

    @app.post("/reports")
    async def generate_report(payload: dict):
        try:
            site_id = int(payload.get("site_id") or 0)
            start = date.fromisoformat(payload.get("period_start") or "")
            end = date.fromisoformat(payload.get("period_end") or "")
        except (TypeError, ValueError):
            return fail("Site ID, start date, and end date are required", 400)
        if not site_id or end < start:
            return fail("Site ID, start date, and end date are required", 400)

        include = bool(payload.get("ai_enabled", False))
        result = await asyncio.get_running_loop().run_in_executor(
            None, ctx.reports.generate, site_id, start, end, include)
        if result is None:
            return fail("Failed to generate report", 404)
        return {"success": True, "report_id": result["report_id"], "file_path": result["file_path"],
                "summary": result["summary"], "ai_summary": result["ai_summary"],
                "message": "Report generated successfully"}

    @app.get("/reports/{report_id}")
    async def get_report(report_id: int):
        report = ctx.store.get_report(report_id)
        if not report:
            return fail("Report not found", 404)
        return {"success": True, "report": report.to_dict()}

    @app.post("/ai/test")
    async def test_ai_connection():
        result = await asyncio.get_running_loop().run_in_executor(None, ctx.summarizer.test_connection)
        if result.success:
            return {"success": True, "message": "Summarizer connection successful"}
        return JSONResponse({"success": False, "error": result.error}, status_code=500)

    # per-user settings

    @app.get("/settings/{user_id}/{key}")
    async def get_setting(user_id: int, key: str):
        return {"success": True, "key": key, "value": ctx.store.get_setting(user_id, key)}

    @app.put("/settings/{user_id}/{key}")
    async def put_setting(user_id: int, key: str, payload: dict):
        if "value" not in payload:
            return fail("A value is required", 400)
        if not ctx.store.set_setting(user_id, key, payload["value"]):
            return fail("Failed to save setting", 500)
        return {"success": True, "key": key, "value": payload["value"]}

    return app
