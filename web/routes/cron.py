"""Cron-triggered endpoints, guarded by a shared bearer secret."""

import hmac
from functools import wraps
import structlog
from quart import Blueprint, current_app, jsonify, request
from config.settings import settings
from notifications.errors import UserEnumerationError

log = structlog.get_logger(__name__)

cron_bp = Blueprint("cron", __name__)


def cron_auth_required(f):
    @wraps(f)
    async def decorated(*args, **kwargs):
        secret = settings.cron_secret
        if not secret:
            log.error("cron_secret_not_configured")
            return jsonify({"error": "CRON_SECRET not configured"}), 500
        header = request.headers.get("Authorization", "")
        # Bytes, so non-ASCII header values compare instead of raising
        if not hmac.compare_digest(header.encode(), f"Bearer {secret}".encode()):
            return jsonify({"error": "Unauthorized"}), 401
        return await f(*args, **kwargs)

    return decorated


@cron_bp.route("/proactive-push", methods=["GET", "POST"])
@cron_auth_required
async def proactive_push():
    """Run one proactive push cycle and return its summary."""
    runner = current_app.proactive_runner  # type: ignore[attr-defined]
    if runner is None:
        return jsonify({"success": False, "error": "runner unavailable"}), 503

    try:
        summary = await runner.run()
    except UserEnumerationError as e:
        log.error("proactive_push_failed", error=str(e))
        return jsonify({"success": False, "error": "Could not list users"}), 500
    except Exception as e:
        log.error("proactive_push_failed", error=str(e))
        return jsonify({"success": False, "error": "Internal server error"}), 500

    return jsonify(summary.to_dict())
