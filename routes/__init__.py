from .health import health_bp
from .verify_pin import verify_pin_bp
