from models.db import db

class PinAttemptMeta(db.Model):
    __tablename__ = "pin_attempts_meta"

    # e.g. "lockout:1.2.3.4" or "cumulative_blocked_count"
    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.Text, nullable=False, default="0")
