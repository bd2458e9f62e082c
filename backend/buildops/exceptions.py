# Overview: Service-layer exception hierarchy shared by services, gateways and routes.

"""
All service failures derive from ServiceError so a blueprint can translate
any of them with one except clause:

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code

details always carries the entity id and, for lifecycle failures, the
attempted transition so a failed request can be investigated by hand.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code = 500
    code = "SERVICE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError, ValueError):
    """Bad input or a disallowed state transition."""
    status_code = 400
    code = "VALIDATION_ERROR"


class ForbiddenError(ServiceError):
    """Caller role lacks the permission for the requested action."""
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, {"resource": resource, "id": resource_id})


class ConflictError(ServiceError, ValueError):
    """
    Optimistic-concurrency mismatch: the row changed under us.

    Callers should refetch and retry; nothing was written.
    """
    status_code = 409
    code = "CONFLICT"


class AggregationError(ServiceError):
    """A read feeding the decision queue or a budget roll-up failed."""
    status_code = 503
    code = "AGGREGATION_FAILED"


class GatewayError(ServiceError):
    """Notification or document/signature service failure."""
    status_code = 502
    code = "GATEWAY_ERROR"
