"""
SQLAlchemy ORM Model: Jobs

A Job tracks one unit of long-running work (search, scrape, document
analysis) from submission to its single terminal transition.

State machine (status column):
    pending     created, waiting for the background runner
    processing  claimed by exactly one background task
    completed   result stored, progress = 100
    failed      error stored (includes user cancellation)

Invariants kept by services/jobs.py:
    end_time set   iff status in (completed, failed)
    result set     iff status == completed
    error set      iff status == failed
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from compliance.models.base import Base, JSONType, UTCDateTime, utcnow


class JobStatus(str, Enum):
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, Enum):
    SEARCH            = "search"
    DOCUMENT_ANALYSIS = "document_analysis"
    WEB_SCRAPING      = "web_scraping"
    WEB_SEARCH        = "web_search"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_owner_created", "owner_id", "created_at"),
        Index("idx_jobs_status_updated", "status", "updated_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    job_type: Mapped[JobType] = mapped_column(
        SQLEnum(JobType, native_enum=False, length=32,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, native_enum=False, length=16,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=JobStatus.PENDING,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    query:       Mapped[str]            = mapped_column(Text, nullable=False, default="")
    document_id: Mapped[Optional[str]]  = mapped_column(String(36), nullable=True)
    owner_id:    Mapped[Optional[str]]  = mapped_column(String(128), nullable=True)
    params:      Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    start_time: Mapped[datetime]           = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    end_time:   Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    result: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    error:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return f"<Job id={self.id} type={self.job_type} status={self.status} progress={self.progress}>"
