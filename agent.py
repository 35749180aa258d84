"""Managed-site agent.

Serves the API the dashboard polls (site-info, health, updates, update,
backup, connect) for one WordPress install, answering through WP-CLI.

Run with ``uvicorn agent:create_agent_app --factory``.
"""

import hmac
import json
import logging
import os
import platform
import shutil
import subprocess
from datetime import datetime
from typing import Any, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from config import Config, load_config
from logging_setup import setup_logging

logger = logging.getLogger(__name__)

# keep WP-CLI quiet and fast
os.environ.setdefault("WP_CLI_DISABLE_AUTO_CHECK_UPDATE", "1")


class WPCliError(Exception):
    pass


def extract_json(text: str) -> Any:
    """First JSON object or array in WP-CLI output, skipping any PHP noise before it."""
    decoder = json.JSONDecoder()
    for i, ch in enumerate(text or ""):
        if ch in "[{":
            try:
                value, _ = decoder.raw_decode(text[i:])
                return value
            except ValueError:
                continue
    return None


class WPCli:
    def __init__(self, wpcli: str, path: str, timeout: int = 120):
        self.wpcli = wpcli
        self.path = path
        self.timeout = timeout

    def run(self, args: List[str], timeout: Optional[int] = None) -> Tuple[str, str, int]:
        cmd = [self.wpcli] + args + [f"--path={self.path}", "--no-color"]
        logger.debug("wp %s", " ".join(args))
        try:
            r = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
                               timeout=timeout or self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise WPCliError(f"wp {' '.join(args)} failed: {e}") from e
        return r.stdout, r.stderr, r.returncode

    def value(self, args: List[str]) -> str:
        out, err, rc = self.run(args)
        if rc != 0:
            raise WPCliError((err or out).strip() or f"wp {' '.join(args)} exited with {rc}")
        return out.strip()

    def json(self, args: List[str]) -> Any:
        data = extract_json(self.value(args + ["--format=json"]))
        return data if data is not None else []

    def count(self, args: List[str]) -> int:
        # warnings can precede the number
        lines = self.value(args + ["--format=count"]).splitlines()
        last = lines[-1].strip() if lines else "0"
        if not last.isdigit():
            raise WPCliError(f"wp {' '.join(args)} returned no count: {last}")
        return int(last)

    # WordPress facts

    def site_info(self):
        cli = self.json(["cli", "info"])
        return {
            "name": self.value(["option", "get", "blogname"]),
            "site_url": self.value(["option", "get", "home"]),
            "admin_email": self.value(["option", "get", "admin_email"]),
            "wp_version": self.value(["core", "version"]),
            "php_version": cli.get("php_version") if isinstance(cli, dict) else None,
            "plugins_count": self.count(["plugin", "list", "--status=active"]),
            "themes_count": self.count(["theme", "list"]),
            "active_theme": self.value(["theme", "list", "--status=active", "--field=name"]),
            "multisite": self.value(["eval", "echo is_multisite() ? 1 : 0;"]) == "1",
        }

    def available_updates(self):
        updates = []
        core = self.json(["core", "check-update"])
        if core:
            updates.append({
                "type": "core",
                "name": "WordPress",
                "current_version": self.value(["core", "version"]),
                "new_version": core[0].get("version"),
                "package": core[0].get("package_url", ""),
            })
        for p in self.json(["plugin", "list", "--update=available", "--fields=name,title,version,update_version,file"]):
            updates.append({
                "type": "plugin",
                "name": p.get("title") or p.get("name"),
                "slug": p.get("name"),
                "file": p.get("file"),
                "current_version": p.get("version"),
                "new_version": p.get("update_version"),
            })
        for t in self.json(["theme", "list", "--update=available", "--fields=name,title,version,update_version"]):
            updates.append({
                "type": "theme",
                "name": t.get("title") or t.get("name"),
                "slug": t.get("name"),
                "current_version": t.get("version"),
                "new_version": t.get("update_version"),
            })
        return updates

    def update(self, kind: str, slug: Optional[str] = None):
        if kind == "core":
            return self.value(["core", "update"])
        return self.value([kind, "update", slug])

    def export_db(self, target: str):
        self.value(["db", "export", target])
        return target


def disk_space(path: str):
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return None
    return {"total": usage.total, "free": usage.free, "used": usage.used}


def create_agent_app(config: Config = None, wp=None) -> FastAPI:
    config = config or load_config()
    setup_logging("agent", config.log_dir, config.log_level)
    wp = wp or WPCli(config.wpcli, config.wp_path, config.wp_timeout)

    app = FastAPI(title="SiteHerd agent")
    app.state.connected = False

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse({"success": False, "message": exc.detail}, status_code=exc.status_code)

    def key_matches(candidate: str) -> bool:
        expected = config.connection_key or ""
        return bool(expected) and hmac.compare_digest(candidate.encode(), expected.encode())

    def require_bearer(authorization: str = Header(default="")):
        token = authorization[7:] if authorization.startswith("Bearer ") else ""
        if not key_matches(token):
            raise HTTPException(status_code=401, detail="Invalid or missing credential")

    def wp_failure(e: WPCliError):
        logger.error("%s", e)
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)

    router = APIRouter(prefix=f"/wp-json/{config.api_namespace}")
    protected = [Depends(require_bearer)]

    @router.get("/site-info", dependencies=protected)
    def site_info():
        try:
            info = wp.site_info()
        except WPCliError as e:
            return wp_failure(e)
        return {"success": True, "connected": app.state.connected, **info}

    @router.get("/health", dependencies=protected)
    def health():
        try:
            updates = wp.available_updates()
            info = wp.site_info()
        except WPCliError as e:
            return wp_failure(e)
        plugins = [u for u in updates if u["type"] == "plugin"]
        themes = [u for u in updates if u["type"] == "theme"]
        return {
            "success": True,
            "wordpress": {"version": info["wp_version"], "updates_available": any(u["type"] == "core" for u in updates)},
            "plugins": {"total": info["plugins_count"], "updates_available": len(plugins),
                        "outdated_plugins": [p["slug"] for p in plugins]},
            "themes": {"total": info["themes_count"], "updates_available": len(themes),
                       "active_theme": info["active_theme"]},
            "server": {"php_version": info["php_version"], "platform": platform.platform(),
                       "disk_space": disk_space(config.wp_path)},
        }

    @router.get("/updates", dependencies=protected)
    def updates():
        try:
            return wp.available_updates()
        except WPCliError as e:
            return wp_failure(e)

    @router.post("/update", dependencies=protected)
    def perform_update(payload: dict):
        kind = payload.get("type")
        if not kind or not payload.get("name"):
            return JSONResponse({"success": False, "error": "Update type and name are required"}, status_code=400)
        if kind not in ("core", "plugin", "theme"):
            return JSONResponse({"success": False, "error": "Invalid update type"}, status_code=400)

        if not all(isinstance(payload.get(k), (str, type(None))) for k in ("slug", "file")):
            return JSONResponse({"success": False, "error": "Slug and file must be strings"}, status_code=400)

        slug = payload.get("slug")
        if kind == "plugin" and not slug and payload.get("file"):
            slug = payload["file"].split("/")[0].removesuffix(".php")
        if kind != "core" and not slug:
            return JSONResponse({"success": False, "error": "A slug or plugin file is required"}, status_code=400)

        try:
            output = wp.update(kind, slug)
        except WPCliError as e:
            return wp_failure(e)
        logger.info("updated %s %s", kind, slug or "core")
        return {"success": True, "message": output}

    @router.post("/backup", dependencies=protected)
    async def create_backup(request: Request):
        payload = await request.json() if await request.body() else {}
        backup_type = payload.get("type", "incremental")
        if backup_type not in ("full", "incremental"):
            return JSONResponse({"success": False, "error": "Invalid backup type"}, status_code=400)

        os.makedirs(config.agent_backup_dir, exist_ok=True)
        target = os.path.join(config.agent_backup_dir,
                              f"backup-{backup_type}-{datetime.now():%Y-%m-%d-%H-%M-%S}.sql")
        try:
            wp.export_db(os.path.abspath(target))
        except WPCliError as e:
            return wp_failure(e)
        size = os.path.getsize(target) if os.path.exists(target) else 0
        return {"success": True, "type": backup_type, "file_path": target, "file_size": size,
                "timestamp": datetime.now().isoformat(timespec="seconds")}

    @router.post("/connect")
    def connect(payload: dict):
        if not key_matches(str(payload.get("connection_key") or "")):
            return JSONResponse({"success": False, "message": "Invalid connection key"}, status_code=401)
        try:
            info = wp.site_info()
        except WPCliError as e:
            return wp_failure(e)
        app.state.connected = True
        return {
            "success": True,
            "message": "Connection successful",
            "site_info": {k: info.get(k) for k in ("name", "wp_version", "php_version")} | {"url": info.get("site_url")},
        }

    app.include_router(router)
    return app
