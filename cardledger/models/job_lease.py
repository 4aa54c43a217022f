"""
Named leases for periodic jobs.
"""
from datetime import datetime
from ..extensions import db


class JobLease(db.Model):
    """A job may run while holder owns an unexpired lease row for its name."""
    __tablename__ = 'job_leases'

    name = db.Column(db.String(100), primary_key=True)
    holder = db.Column(db.String(100))
    expires_at = db.Column(db.DateTime)
    acquired_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<JobLease {self.name} held by {self.holder}>'
