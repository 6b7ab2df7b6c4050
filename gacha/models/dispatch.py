import enum

from gacha import db


class DispatchStatus(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class DispatchQueueEntry(db.Model):
    """A command waiting for (or processed by) the game-server bridge.

    The bridge polls ``status='pending'`` rows, runs ``command`` and reports
    back. ``(roll_record_id, position)`` is unique so re-enqueueing a roll
    after a timeout returns the rows already written.
    """

    __tablename__ = "dispatch_queue_entry"
    __table_args__ = (db.UniqueConstraint("roll_record_id", "position", name="uq_dispatch_roll_position"),)

    id = db.Column(db.Integer, primary_key=True)
    roll_record_id = db.Column(db.Integer, db.ForeignKey("roll_record.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    command = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=DispatchStatus.PENDING.value, index=True)
    created_at = db.Column(db.DateTime, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "rollRecordId": self.roll_record_id,
            "command": self.command,
            "status": self.status,
            "createdAt": self.created_at.isoformat() + "Z",
            "processedAt": (self.processed_at.isoformat() + "Z") if self.processed_at else None,
            "failureReason": self.failure_reason,
        }
