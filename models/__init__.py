"""ORM models exposed by the FieldClock application."""
from .commit_record import CommitRecord
from .pending_op import PendingOp
from .time_entry import TimeEntry

__all__ = ["CommitRecord", "PendingOp", "TimeEntry"]
