from flask import request, current_app

# Fits pin_attempts.ip; longer header values are truncated
MAX_IP_LENGTH = 64


def client_ip() -> str:
    """
    First hop of X-Forwarded-For, then X-Real-IP, then the socket address.
    """
    if current_app.config.get("TRUST_FORWARDED_FOR", True):
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:MAX_IP_LENGTH]
        real_ip = (request.headers.get("X-Real-IP") or "").strip()
        if real_ip:
            return real_ip[:MAX_IP_LENGTH]
    return (request.remote_addr or "unknown")[:MAX_IP_LENGTH]
