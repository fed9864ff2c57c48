from datetime import datetime
from models.db import db

class PinAttempt(db.Model):
    __tablename__ = "pin_attempts"
    __table_args__ = (
        db.Index("idx_pin_attempts_ip_time", "ip", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Not unique: one row per submission, many rows per ip
    ip = db.Column(db.String(64), nullable=False)
    success = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
