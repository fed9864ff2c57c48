from .db import db
from .user import User
from .session import Session
from .audit_log import AuditLog
from .pin_attempt import PinAttempt
from .pin_attempt_meta import PinAttemptMeta
