import json
import logging
from datetime import datetime, time, timedelta

from sqlalchemy import create_engine, event, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from models import (Backup, Base, CheckResult, Report, Setting, Site, UpdateAttempt,
                    utcnow)

logger = logging.getLogger(__name__)


def _enable_sqlite_fk(dbapi_conn, conn_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def day_bounds(start, end):
    """Half-open datetime window covering whole days start..end inclusive."""
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)


class Store:
    """All persistence for sites, check history, backups, updates, reports and settings.

    Every method opens its own session; writes are committed individually.
    """

    def __init__(self, database_url="sqlite:///siteherd.db"):
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        self.engine = create_engine(database_url, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_fk)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def init_db(self):
        Base.metadata.create_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()

    # sites

    def add_site(self, url, name, api_key):
        sess = self.SessionLocal()
        try:
            s = Site(url=url.strip(), name=name.strip(), api_key=api_key, status="inactive")
            sess.add(s)
            sess.commit()
            return s.id
        except IntegrityError:
            sess.rollback()
            logger.warning("Site credential collision for %s", url)
            return None
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("add_site failed for %s: %s", url, e)
            return None
        finally:
            sess.close()

    def get_site(self, site_id):
        sess = self.SessionLocal()
        try:
            return sess.get(Site, site_id)
        finally:
            sess.close()

    def get_sites(self, status=None):
        sess = self.SessionLocal()
        try:
            q = sess.query(Site)
            if status:
                q = q.filter(Site.status == status)
            return q.order_by(Site.name.asc(), Site.id.asc()).all()
        finally:
            sess.close()

    def update_site_status(self, site_id, status, **extra):
        values = {"status": status, "last_check": utcnow()}
        values.update(extra)
        sess = self.SessionLocal()
        try:
            n = sess.query(Site).filter(Site.id == site_id).update(values, synchronize_session=False)
            sess.commit()
            return n > 0
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("update_site_status failed for site %s: %s", site_id, e)
            return False
        finally:
            sess.close()

    def delete_site(self, site_id):
        sess = self.SessionLocal()
        try:
            site = sess.get(Site, site_id)
            if not site:
                return False
            sess.delete(site)
            sess.commit()
            return True
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("delete_site failed for site %s: %s", site_id, e)
            return False
        finally:
            sess.close()

    # history

    def _insert(self, row):
        sess = self.SessionLocal()
        try:
            sess.add(row)
            sess.commit()
            return row.id
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("insert into %s failed: %s", row.__tablename__, e)
            return None
        finally:
            sess.close()

    def log_check(self, site_id, check_type, status, response_time=None, response_code=None,
                  error_message=None, checked_at=None):
        return self._insert(CheckResult(
            site_id=site_id,
            check_type=check_type,
            status=status,
            response_time=response_time,
            response_code=response_code,
            error_message=error_message,
            checked_at=checked_at or utcnow(),
        ))

    def log_backup(self, site_id, backup_type, status, file_path="", file_size=0, created_at=None):
        return self._insert(Backup(
            site_id=site_id,
            backup_type=backup_type,
            status=status,
            file_path=file_path or "",
            file_size=int(file_size or 0),
            created_at=created_at or utcnow(),
        ))

    def log_update(self, site_id, component_type, component_name, version_from, version_to, status,
                   error_message=None, created_at=None):
        return self._insert(UpdateAttempt(
            site_id=site_id,
            component_type=component_type,
            component_name=component_name,
            version_from=version_from,
            version_to=version_to or "",
            status=status,
            error_message=error_message,
            created_at=created_at or utcnow(),
        ))

    def _history(self, model, stamp, site_id, start=None, end=None, limit=None, **filters):
        sess = self.SessionLocal()
        try:
            q = sess.query(model).filter(model.site_id == site_id)
            for col, value in filters.items():
                if value is not None:
                    q = q.filter(getattr(model, col) == value)
            if start is not None and end is not None:
                lo, hi = day_bounds(start, end)
                q = q.filter(stamp >= lo, stamp < hi)
            q = q.order_by(stamp.desc(), model.id.desc())
            if limit:
                q = q.limit(limit)
            return q.all()
        finally:
            sess.close()

    def get_checks(self, site_id, start=None, end=None, check_type=None, limit=None):
        return self._history(CheckResult, CheckResult.checked_at, site_id, start, end, limit,
                             check_type=check_type)

    def get_backups(self, site_id, start=None, end=None, limit=None):
        return self._history(Backup, Backup.created_at, site_id, start, end, limit)

    def get_updates(self, site_id, start=None, end=None, limit=None):
        return self._history(UpdateAttempt, UpdateAttempt.created_at, site_id, start, end, limit)

    def prune_checks(self, older_than):
        sess = self.SessionLocal()
        try:
            n = sess.query(CheckResult).filter(CheckResult.checked_at < older_than).delete(
                synchronize_session=False)
            sess.commit()
            return n
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("prune_checks failed: %s", e)
            return None
        finally:
            sess.close()

    def cleanup_old_backups(self, days=30):
        # Only the log rows; the archives live on the managed sites.
        cutoff = utcnow() - timedelta(days=days)
        sess = self.SessionLocal()
        try:
            n = sess.query(Backup).filter(Backup.created_at < cutoff, Backup.status == "completed").delete(
                synchronize_session=False)
            sess.commit()
            return n
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("cleanup_old_backups failed: %s", e)
            return None
        finally:
            sess.close()

    def backup_stats(self, days=30):
        cutoff = utcnow() - timedelta(days=days)
        sess = self.SessionLocal()
        try:
            rows = sess.query(Backup.status, func.count(Backup.id), func.coalesce(func.sum(Backup.file_size), 0)) \
                .filter(Backup.created_at >= cutoff).group_by(Backup.status).all()
        finally:
            sess.close()
        counts = {status: (n, size) for status, n, size in rows}
        total = sum(n for n, _ in counts.values())
        ok = counts.get("completed", (0, 0))[0]
        return {
            "total_backups": total,
            "successful_backups": ok,
            "failed_backups": counts.get("failed", (0, 0))[0],
            "total_size": int(counts.get("completed", (0, 0))[1]),
            "success_rate": round(ok / total * 100, 1) if total else 0,
        }

    # reports

    def save_report(self, site_id, period_start, period_end, technical_data, ai_summary, file_path,
                    status="generated"):
        return self._insert(Report(
            site_id=site_id,
            period_start=period_start,
            period_end=period_end,
            technical_data=json.dumps(technical_data, sort_keys=True),
            ai_summary=ai_summary,
            file_path=file_path,
            status=status,
        ))

    def get_report(self, report_id):
        sess = self.SessionLocal()
        try:
            return sess.get(Report, report_id)
        finally:
            sess.close()

    def get_reports(self, site_id):
        sess = self.SessionLocal()
        try:
            return sess.query(Report).filter(Report.site_id == site_id) \
                .order_by(Report.created_at.desc(), Report.id.desc()).all()
        finally:
            sess.close()

    def mark_report_sent(self, report_id):
        sess = self.SessionLocal()
        try:
            n = sess.query(Report).filter(Report.id == report_id).update({"status": "sent"})
            sess.commit()
            return n > 0
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("mark_report_sent failed for report %s: %s", report_id, e)
            return False
        finally:
            sess.close()

    # per-user settings

    def get_setting(self, user_id, key, default=None):
        sess = self.SessionLocal()
        try:
            row = sess.query(Setting).filter_by(user_id=user_id, setting_key=key).first()
        finally:
            sess.close()
        if not row:
            return default
        try:
            return json.loads(row.setting_value)
        except ValueError:
            return row.setting_value

    def set_setting(self, user_id, key, value):
        sess = self.SessionLocal()
        try:
            row = sess.query(Setting).filter_by(user_id=user_id, setting_key=key).first()
            if row:
                row.setting_value = json.dumps(value)
            else:
                sess.add(Setting(user_id=user_id, setting_key=key, setting_value=json.dumps(value)))
            sess.commit()
            return True
        except SQLAlchemyError as e:
            sess.rollback()
            logger.error("set_setting failed for user %s key %s: %s", user_id, key, e)
            return False
        finally:
            sess.close()
