from __future__ import annotations

from typing import Any


class DispatchCoreError(Exception):
    """
    Base for every error kind this service returns to callers.
    `code` is stable and machine readable; `message` is for humans.
    """

    code = "DISPATCH_ERROR"

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFound(DispatchCoreError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} '{entity_id}' not found", details=[{"kind": kind, "id": entity_id}])
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(DispatchCoreError):
    code = "INVALID_TRANSITION"

    def __init__(self, delivery_id: str, current: str, target: str, reason: str | None = None):
        msg = f"Cannot transition delivery '{delivery_id}' from {current} to {target}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg, details=[{"delivery_id": delivery_id, "current": current, "target": target}])
        self.delivery_id = delivery_id
        self.current = current
        self.target = target


class MissingEvidence(DispatchCoreError):
    code = "MISSING_EVIDENCE"

    def __init__(self, delivery_id: str, evidence: str):
        super().__init__(
            f"Delivery '{delivery_id}' requires {evidence} before it can be marked delivered",
            details=[{"delivery_id": delivery_id, "evidence": evidence}],
        )
        self.delivery_id = delivery_id
        self.evidence = evidence


class InvalidRecord(DispatchCoreError):
    code = "INVALID_RECORD"


class ConcurrentUpdate(DispatchCoreError):
    code = "CONCURRENT_UPDATE"

    def __init__(self, kind: str, entity_id: str, expected_version: int):
        super().__init__(
            f"{kind} '{entity_id}' was modified concurrently (expected version {expected_version})",
            details=[{"kind": kind, "id": entity_id, "expected_version": expected_version}],
        )
        self.kind = kind
        self.entity_id = entity_id
        self.expected_version = expected_version


class ReorderPartialFailure(DispatchCoreError):
    code = "REORDER_PARTIAL_FAILURE"

    def __init__(self, courier_id: str, succeeded: list[str], failed: dict[str, str]):
        super().__init__(
            f"Reorder for courier '{courier_id}' applied {len(succeeded)} of {len(succeeded) + len(failed)} positions",
            details=[
                {"succeeded": list(succeeded)},
                {"failed": [{"delivery_id": k, "reason": v} for k, v in failed.items()]},
            ],
        )
        self.courier_id = courier_id
        self.succeeded = list(succeeded)
        self.failed = dict(failed)

    @property
    def failed_ids(self) -> list[str]:
        return list(self.failed.keys())


class SubscriptionDeliveryFailure(DispatchCoreError):
    """Recorded, never raised into the operation that triggered the event."""

    code = "SUBSCRIPTION_DELIVERY_FAILURE"

    def __init__(self, subscription_id: str, event_type: str, attempts: int, status_code: int, reason: str | None = None):
        super().__init__(
            f"Webhook '{subscription_id}' gave up on {event_type} after {attempts} attempt(s) (last status {status_code})",
            details=[{"subscription_id": subscription_id, "event_type": event_type, "attempts": attempts, "status_code": status_code, "reason": reason}],
        )
        self.subscription_id = subscription_id
        self.event_type = event_type
        self.attempts = attempts
        self.status_code = status_code
