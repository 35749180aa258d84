import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from models import BACKUP_TYPES, COMPONENT_TYPES

logger = logging.getLogger(__name__)


class Maintenance:
    """Backups and component updates driven through the managed-site API."""

    def __init__(self, store, client, config, sleep=time.sleep):
        self.store = store
        self.client = client
        self.config = config
        self.sleep = sleep

    def create_backup(self, site_id, backup_type="incremental"):
        """Ask the site for a backup and log the attempt. Returns the backup row id or None."""
        site = self.store.get_site(site_id)
        if not site:
            return None
        if backup_type not in BACKUP_TYPES:
            raise ValueError(f"unknown backup type: {backup_type}")

        r = self.client.create_backup(site, backup_type)
        data = r.data if isinstance(r.data, dict) else {}
        if r.ok and data.get("success"):
            return self.store.log_backup(site.id, backup_type, "completed",
                                         file_path=data.get("file_path", ""), file_size=data.get("file_size", 0))

        self.store.log_backup(site.id, backup_type, "failed")
        logger.warning("backup failed for site %s: %s", site.id, r.error or data.get("error", "Unknown backup error"))
        return None

    def backup_all_sites(self, backup_type="incremental"):
        summary = {"completed": 0, "failed": 0, "aborted": False}
        try:
            sites = self.store.get_sites("active")
        except SQLAlchemyError as e:
            logger.error("backup batch skipped, store unavailable: %s", e)
            summary["aborted"] = True
            return summary

        for i, site in enumerate(sites):
            if i:
                self.sleep(self.config.backup_pause)
            try:
                if self.create_backup(site.id, backup_type):
                    summary["completed"] += 1
                else:
                    summary["failed"] += 1
            except SQLAlchemyError as e:
                logger.error("backup batch stopped at site %s, store unavailable: %s", site.id, e)
                summary["aborted"] = True
                break
        return summary

    def get_available_updates(self, site_id):
        site = self.store.get_site(site_id)
        if not site:
            return None
        r = self.client.updates(site)
        if not r.ok:
            logger.info("could not list updates for site %s: %s", site.id, r.error)
            return None
        return r.data if isinstance(r.data, list) else []

    def apply_updates(self, site_id, updates, backup_first=True):
        """Apply each update in turn, logging every attempt.

        Returns None for an unknown site, otherwise a dict with the per-update
        results. With backup_first, nothing is touched when the backup fails.
        """
        site = self.store.get_site(site_id)
        if not site:
            return None

        if backup_first and not self.create_backup(site.id):
            return {"success": False, "error": "Failed to create backup before updates", "results": []}

        results = []
        for update in updates:
            result = self._apply_one(site, update)
            results.append(result)
            self.store.log_update(
                site.id,
                update.get("type"),
                update.get("name"),
                update.get("current_version"),
                update.get("new_version"),
                "completed" if result.get("success") else "failed",
                result.get("error"),
            )
        return {"success": all(r.get("success") for r in results), "results": results}

    def _apply_one(self, site, update):
        if update.get("type") not in COMPONENT_TYPES or not update.get("name"):
            return {"success": False, "error": "Update type and name are required"}
        r = self.client.apply_update(site, update)
        if isinstance(r.data, dict):
            result = dict(r.data)
            result.setdefault("success", r.ok)
            if not result["success"]:
                result.setdefault("error", r.error or "Update failed")
            return result
        return {"success": False, "error": r.error or "Invalid response"}
