import json
from flask import request, current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from utils.client_ip import client_ip


def log_event(action: str, metadata=None):
    user_agent = request.headers.get("User-Agent", "")

    row = AuditLog(
        action=action,
        ip=client_ip(),
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata) if metadata else None
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Audit event %s could not be stored", action, exc_info=True)
