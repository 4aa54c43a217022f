"""
Database-backed leases for periodic jobs.

APScheduler's max_instances only protects one process. A lease row taken with
a conditional update keeps a sweep single-flight across every process that
shares the database; an expired lease (crashed holder) can be taken over.
"""
import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import update, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import JobLease

logger = logging.getLogger(__name__)


def _holder_id() -> str:
    return f'{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}'


class JobLeaseService:

    def acquire(self, name: str, ttl_seconds: int = None, now: datetime = None) -> Optional[str]:
        """Take the lease. Returns the holder id, or None if someone else holds it."""
        now = now or datetime.utcnow()
        ttl = ttl_seconds or current_app.config.get('SWEEP_LEASE_SECONDS', 300)
        holder = _holder_id()

        if db.session.get(JobLease, name) is None:
            try:
                db.session.add(JobLease(name=name))
                db.session.commit()
            except IntegrityError:
                # Another process created it first
                db.session.rollback()

        result = db.session.execute(
            update(JobLease)
            .where(
                JobLease.name == name,
                or_(JobLease.holder.is_(None), JobLease.expires_at.is_(None), JobLease.expires_at < now),
            )
            .values(holder=holder, expires_at=now + timedelta(seconds=ttl), acquired_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        if result.rowcount != 1:
            logger.info(f'[Lease] {name} is held elsewhere, skipping')
            return None
        return holder

    def release(self, name: str, holder: str) -> None:
        db.session.execute(
            update(JobLease)
            .where(JobLease.name == name, JobLease.holder == holder)
            .values(holder=None, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    @contextmanager
    def lease(self, name: str, ttl_seconds: int = None):
        """Yields the holder id, or None when the lease is taken."""
        holder = self.acquire(name, ttl_seconds)
        try:
            yield holder
        finally:
            if holder:
                db.session.rollback()
                self.release(name, holder)


# Singleton instance
job_lease_service = JobLeaseService()
