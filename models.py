# models.py
import json
from datetime import datetime, timezone

from sqlalchemy import (Column, Date, DateTime, ForeignKey, Integer, String, Text,
                        UniqueConstraint)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

SITE_STATUSES = ("active", "inactive", "error")
CHECK_TYPES = ("uptime", "api", "performance")
CHECK_STATUSES = ("up", "down", "warning", "error")
BACKUP_TYPES = ("full", "incremental")
BACKUP_STATUSES = ("pending", "completed", "failed")
COMPONENT_TYPES = ("core", "plugin", "theme")
UPDATE_STATUSES = ("pending", "completed", "failed", "rolled_back")
REPORT_STATUSES = ("pending", "generated", "sent")


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Site(Base):
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True)
    url = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    api_key = Column(String(64), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default="inactive", index=True)
    last_check = Column(DateTime)
    wp_version = Column(String(20))
    php_version = Column(String(20))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    checks = relationship("CheckResult", back_populates="site", cascade="all, delete-orphan")
    backups = relationship("Backup", back_populates="site", cascade="all, delete-orphan")
    updates = relationship("UpdateAttempt", back_populates="site", cascade="all, delete-orphan")
    reports = relationship("Report", back_populates="site", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "name": self.name,
            "status": self.status,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "wp_version": self.wp_version,
            "php_version": self.php_version,
        }


class CheckResult(Base):
    __tablename__ = "monitoring"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    check_type = Column(String(16), nullable=False, index=True)
    status = Column(String(16), nullable=False, index=True)
    response_time = Column(Integer)  # ms
    response_code = Column(Integer)
    error_message = Column(Text)
    checked_at = Column(DateTime, default=utcnow, index=True)

    site = relationship("Site", back_populates="checks")

    def to_dict(self):
        return {
            "id": self.id,
            "site_id": self.site_id,
            "check_type": self.check_type,
            "status": self.status,
            "response_time": self.response_time,
            "response_code": self.response_code,
            "error_message": self.error_message,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


class Backup(Base):
    __tablename__ = "backups"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    file_path = Column(String(500), nullable=False, default="")
    file_size = Column(Integer, default=0)  # bytes
    backup_type = Column(String(16), nullable=False, default="incremental")
    status = Column(String(16), nullable=False, default="pending", index=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    site = relationship("Site", back_populates="backups")

    def to_dict(self):
        return {
            "id": self.id,
            "site_id": self.site_id,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "backup_type": self.backup_type,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UpdateAttempt(Base):
    __tablename__ = "updates"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    component_type = Column(String(16), nullable=False)
    component_name = Column(String(255), nullable=False)
    version_from = Column(String(50))
    version_to = Column(String(50), nullable=False, default="")
    status = Column(String(16), nullable=False, default="pending", index=True)
    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow, index=True)

    site = relationship("Site", back_populates="updates")

    def to_dict(self):
        return {
            "id": self.id,
            "site_id": self.site_id,
            "component_type": self.component_type,
            "component_name": self.component_name,
            "version_from": self.version_from,
            "version_to": self.version_to,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Report(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    period_start = Column(Date, nullable=False, index=True)
    period_end = Column(Date, nullable=False)
    technical_data = Column(Text, nullable=False)  # JSON snapshot
    ai_summary = Column(Text)
    file_path = Column(String(500))
    status = Column(String(16), nullable=False, default="pending", index=True)
    created_at = Column(DateTime, default=utcnow)

    site = relationship("Site", back_populates="reports")

    def to_dict(self):
        return {
            "id": self.id,
            "site_id": self.site_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "technical_data": json.loads(self.technical_data or "{}"),
            "ai_summary": self.ai_summary,
            "file_path": self.file_path,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Setting(Base):
    __tablename__ = "settings"
    __table_args__ = (UniqueConstraint("user_id", "setting_key", name="user_setting"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    setting_key = Column(String(100), nullable=False)
    setting_value = Column(Text, nullable=False)  # JSON
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
