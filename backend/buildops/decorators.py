# Overview: Request and permission decorators for API routes.

import secrets
from functools import wraps
from flask import request, jsonify, g, current_app

from .integrations.sms_gateway import twilio_request_signature
from .permissions import ROLES, Caller, has_permission

USER_ID_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"
TWILIO_SIGNATURE_HEADER = "X-Twilio-Signature"


def _is_authenticated() -> bool:
    return isinstance(getattr(g, "caller", None), Caller)


def require_auth(f):
    """
    Establish the caller identity for the request.

    Identity and role resolution happen upstream (gateway/session layer);
    this reads the resolved values from request headers and sets g.caller.

    Returns 401 if the role header is missing or not a known role, or the
    user id is not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        role = (request.headers.get(ROLE_HEADER) or "").strip().lower()
        raw_user_id = request.headers.get(USER_ID_HEADER)

        if not role:
            return jsonify({"error": "Authentication required"}), 401
        if role not in ROLES:
            current_app.logger.warning("Rejected unknown role %r on %s", role, request.path)
            return jsonify({"error": "Unknown caller role"}), 401

        user_id = None
        if raw_user_id:
            try:
                user_id = int(raw_user_id)
            except ValueError:
                return jsonify({"error": "Invalid caller id"}), 401

        g.caller = Caller(user_id=user_id, role=role)
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for read routes; services check their own."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not has_permission(g.caller, permission_code):
                current_app.logger.warning(
                    "Permission denied: role=%s permission=%s path=%s",
                    g.caller.role, permission_code, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_webhook_token(config_key: str):
    """
    Require "Authorization: Bearer <token>" matching app.config[config_key].

    Fails closed: when the secret is not configured every call gets 401.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            expected = current_app.config.get(config_key)
            if not expected:
                current_app.logger.warning("Webhook %s rejected: %s is not set", request.path, config_key)
                return jsonify({"error": "Webhook not configured"}), 401

            header = request.headers.get("Authorization") or ""
            scheme, _, provided = header.partition(" ")
            if scheme.lower() != "bearer" or not provided:
                return jsonify({"error": "Authentication required"}), 401
            if not secrets.compare_digest(provided.strip().encode("utf-8"), expected.encode("utf-8")):
                current_app.logger.warning("Webhook %s rejected: invalid token", request.path)
                return jsonify({"error": "Invalid webhook token"}), 401

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_twilio_signature(f):
    """
    Verify X-Twilio-Signature against TWILIO_AUTH_TOKEN.

    The signed URL is TWILIO_STATUS_CALLBACK_URL when set (for deployments
    behind a proxy), otherwise the URL Flask saw.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_token = current_app.config.get("TWILIO_AUTH_TOKEN")
        if not auth_token:
            current_app.logger.warning("Webhook %s rejected: TWILIO_AUTH_TOKEN is not set", request.path)
            return jsonify({"error": "Webhook not configured"}), 401

        provided = request.headers.get(TWILIO_SIGNATURE_HEADER)
        if not provided:
            return jsonify({"error": "Missing request signature"}), 401

        url = current_app.config.get("TWILIO_STATUS_CALLBACK_URL") or request.url
        expected = twilio_request_signature(auth_token, url, request.form.to_dict())
        if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
            current_app.logger.warning("Webhook %s rejected: signature mismatch", request.path)
            return jsonify({"error": "Invalid request signature"}), 401

        return f(*args, **kwargs)

    return decorated_function
