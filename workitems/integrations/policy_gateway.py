"""
Policy Gateway — authorization decisions for work-item operations.

All outbound HTTP calls to the policy evaluator go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

Two-stage evaluation:
  1. Remote: POST <POLICY_SERVICE_URL>/api/policies/evaluate (5 s timeout).
     A 2xx ``{"success": true, "data": {...}}`` body is authoritative,
     explicit denials included.
  2. Unavailable (timeout, network error, non-2xx, success=false, malformed
     body, or no URL configured): resolved by POLICY_FAILURE_MODE.
       - "fallback": local role table, tagged ``fallback_authorization``
       - "deny":     fail closed, tagged ``error_deny``

Testability: pass a mock `session` to PolicyGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

import requests

from workitems.core.principal import EXECUTIVE_ROLES, Principal
from workitems.services import lineage_validator

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 5
_EVALUATE_PATH = "/api/policies/evaluate"
_SERVICE_NAME = "work-item-service"

FAILURE_MODE_FALLBACK = "fallback"
FAILURE_MODE_DENY = "deny"
FAILURE_MODES = (FAILURE_MODE_FALLBACK, FAILURE_MODE_DENY)

POLICY_ID_FALLBACK = "fallback_authorization"
POLICY_ID_ERROR_DENY = "error_deny"

# ── Fallback role table ────────────────────────────────────────────────────
# Contributor < Manager < Director < VP < President < CEO
_MANAGER_AND_ABOVE = frozenset({"Manager", "Director", "VP", "President", "CEO"})
_DIRECTOR_AND_ABOVE = frozenset({"Director", "VP", "President", "CEO"})
_CONTRIBUTOR_AND_ABOVE = _MANAGER_AND_ABOVE | {"Contributor"}

FALLBACK_REQUIRED_ROLES = {
    "create": _MANAGER_AND_ABOVE,
    "update": _MANAGER_AND_ABOVE,
    "manage_lineage": _MANAGER_AND_ABOVE,
    "delete": _DIRECTOR_AND_ABOVE,
    "read": _CONTRIBUTOR_AND_ABOVE,
}

_OWNER_OVERRIDE_ACTIONS = frozenset({"read", "update"})


class PolicyCallResult:
    """Outcome of one remote evaluation attempt.

    Attributes:
        ok:           True if the evaluator returned an authoritative decision.
        status_code:  HTTP status code (None if network-level failure).
        data:         The ``data`` object of the response body, else None.
        error:        Human-readable error message or None.
        duration_ms:  Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    @classmethod
    def unavailable(cls, error: str, status_code: int | None = None, duration_ms: int = 0):
        return cls(ok=False, status_code=status_code, data=None, error=error, duration_ms=duration_ms)


class PolicyDecision:
    """An allow/deny answer plus provenance."""

    def __init__(
        self,
        allowed: bool,
        policy_id: str | None = None,
        reason: str | None = None,
        context: dict | None = None,
    ) -> None:
        self.allowed = allowed
        self.policy_id = policy_id
        self.reason = reason
        self.context = context or {}

    def __repr__(self):
        return f"<PolicyDecision allowed={self.allowed} policy={self.policy_id}>"


def _resource_attrs(resource: Any) -> dict:
    """Normalise a WorkItem instance or a plain dict into resource attributes."""
    if isinstance(resource, dict):
        get = resource.get
    else:
        def get(key, default=None):
            return getattr(resource, key, default)
    return {
        "id": get("id"),
        "type": get("type") or "work_item",
        "tenant_id": get("tenant_id"),
        "owner_id": get("owner_id"),
    }


def fallback_authorization(principal: Principal, action: str, resource: Any) -> bool:
    """Local role-based check used while the evaluator is unavailable.

    Allowed iff the resource is in the principal's tenant AND the principal
    holds a role listed for the action (or owns the resource, for read and
    update). Unknown actions are never granted by role.
    """
    attrs = _resource_attrs(resource)
    same_tenant = attrs["tenant_id"] == principal.tenant_id
    has_role = principal.has_any_role(FALLBACK_REQUIRED_ROLES.get(action, ()))
    is_owner = (
        action in _OWNER_OVERRIDE_ACTIONS
        and attrs["owner_id"] is not None
        and attrs["owner_id"] == principal.id
    )
    return same_tenant and (has_role or is_owner)


class PolicyGateway:
    """Policy evaluator gateway.

    Instantiate once at module level (module-level singleton pattern) and
    configure with ``init_app`` from the app factory.

    Usage:
        from workitems.integrations.policy_gateway import policy_gateway
        decision = policy_gateway.evaluate(principal, "read", work_item)
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str = "",
        timeout: float = _DEFAULT_TIMEOUT,
        failure_mode: str = FAILURE_MODE_FALLBACK,
    ) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session
        self.base_url = base_url
        self.timeout = timeout
        self.failure_mode = failure_mode

    def init_app(self, app) -> None:
        self.base_url = app.config.get("POLICY_SERVICE_URL") or ""
        self.timeout = app.config.get("POLICY_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT)
        mode = app.config.get("POLICY_FAILURE_MODE", FAILURE_MODE_FALLBACK)
        if mode not in FAILURE_MODES:
            raise ValueError(
                f"POLICY_FAILURE_MODE must be one of {FAILURE_MODES}, got {mode!r}"
            )
        self.failure_mode = mode
        logger.info(
            "Policy gateway configured url=%s mode=%s timeout=%ss",
            self.base_url or "<none>", self.failure_mode, self.timeout,
        )

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Remote evaluation ────────────────────────────────────────────────────

    def _build_request(
        self,
        principal: Principal,
        action: str,
        resource: Any,
        context: dict | None,
    ) -> dict:
        attrs = _resource_attrs(resource)
        return {
            "principal": {
                "id": principal.id,
                "tenant_id": principal.tenant_id,
                "roles": sorted(principal.roles),
            },
            "action": {"type": action, "id": f"action_{action}"},
            "resource": {
                "id": attrs["id"] or f"resource_{int(time.time() * 1000)}",
                "type": attrs["type"],
                "tenant_id": attrs["tenant_id"] or principal.tenant_id,
                "owner_id": attrs["owner_id"],
            },
            "context": {
                **(context or {}),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": _SERVICE_NAME,
            },
        }

    def _call_remote(self, payload: dict) -> PolicyCallResult:
        """Single POST to the evaluator. Never raises; callers check .ok."""
        if not self.base_url:
            return PolicyCallResult.unavailable("Policy service URL is not configured")

        url = f"{self.base_url.rstrip('/')}{_EVALUATE_PATH}"
        t0 = time.perf_counter()
        try:
            resp = self.session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.Timeout:
            return PolicyCallResult.unavailable(
                f"Request timed out after {self.timeout}s",
                duration_ms=int(self.timeout * 1000),
            )
        except requests.RequestException as exc:
            return PolicyCallResult.unavailable(str(exc)[:500])
        duration_ms = int((time.perf_counter() - t0) * 1000)

        if not resp.ok:
            return PolicyCallResult.unavailable(
                f"HTTP {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code, duration_ms=duration_ms,
            )
        try:
            body = resp.json()
        except ValueError:
            return PolicyCallResult.unavailable(
                "Malformed policy response", status_code=resp.status_code,
                duration_ms=duration_ms,
            )
        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            return PolicyCallResult.unavailable(
                message or "Policy evaluation failed",
                status_code=resp.status_code, duration_ms=duration_ms,
            )
        data = body.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("allowed"), bool):
            return PolicyCallResult.unavailable(
                "Malformed policy response", status_code=resp.status_code,
                duration_ms=duration_ms,
            )
        return PolicyCallResult(
            ok=True, status_code=resp.status_code, data=data, error=None,
            duration_ms=duration_ms,
        )

    def _on_unavailable(
        self, principal: Principal, action: str, resource: Any, error: str,
    ) -> PolicyDecision:
        attrs = _resource_attrs(resource)
        if self.failure_mode == FAILURE_MODE_DENY:
            logger.warning(
                "Policy service unavailable, denying action=%s user=%s resource=%s error=%s",
                action, principal.id, attrs["id"], error,
            )
            return PolicyDecision(
                allowed=False,
                policy_id=POLICY_ID_ERROR_DENY,
                reason="Policy evaluation failed - defaulting to deny",
                context={"error": error},
            )

        logger.warning(
            "Policy service unavailable, falling back to role-based authorization "
            "action=%s user=%s resource=%s error=%s",
            action, principal.id, attrs["id"], error,
        )
        allowed = fallback_authorization(principal, action, resource)
        return PolicyDecision(
            allowed=allowed,
            policy_id=POLICY_ID_FALLBACK,
            reason=(
                "Authorized via fallback role-based check" if allowed
                else "Denied by fallback authorization"
            ),
            context={
                "fallback": True,
                "error": error,
                "user_roles": sorted(principal.roles),
                "resource_tenant_id": attrs["tenant_id"],
                "user_tenant_id": principal.tenant_id,
            },
        )

    def evaluate(
        self,
        principal: Principal,
        action: str,
        resource: Any,
        context: dict | None = None,
    ) -> PolicyDecision:
        """Decide whether ``principal`` may perform ``action`` on ``resource``.

        Args:
            principal: The authenticated caller.
            action:    create | read | update | delete | manage_lineage
            resource:  WorkItem instance or dict with id/type/tenant_id/owner_id.
            context:   Extra attributes forwarded to the evaluator.

        Returns:
            PolicyDecision — always returns (never raises on denial).
        """
        result = self._call_remote(self._build_request(principal, action, resource, context))
        if not result.ok:
            return self._on_unavailable(principal, action, resource, result.error)

        data = result.data
        decision = PolicyDecision(
            allowed=data["allowed"],
            policy_id=data.get("policy_id"),
            reason=data.get("reason"),
            context=data.get("context") or {},
        )
        logger.debug(
            "Policy evaluation completed user=%s action=%s resource=%s allowed=%s policy=%s",
            principal.id, action, _resource_attrs(resource)["id"],
            decision.allowed, decision.policy_id,
        )
        return decision

    # ── Work-item checks ─────────────────────────────────────────────────────

    def can_create_work_item(
        self,
        principal: Principal,
        work_item_type: str,
        parent_id: str | None = None,
    ) -> PolicyDecision:
        """Create check plus lineage enforcement.

        Items below the top level need a parent unless the principal holds
        an executive role.
        """
        decision = self.evaluate(
            principal,
            "create",
            {"type": work_item_type, "tenant_id": principal.tenant_id},
            {"parent_id": parent_id, "lineage_enforcement": True},
        )
        if not decision.allowed:
            return decision

        needs_parent = not lineage_validator.is_top_level(work_item_type)
        if needs_parent and not parent_id and not principal.is_executive:
            return PolicyDecision(
                allowed=False,
                policy_id=decision.policy_id,
                reason=(
                    "Non-objective work items require a parent unless created by "
                    f"{' or '.join(sorted(EXECUTIVE_ROLES))}"
                ),
                context=decision.context,
            )
        return decision

    def can_read_work_item(self, principal: Principal, work_item: Any) -> bool:
        return self.evaluate(principal, "read", work_item).allowed

    def can_update_work_item(self, principal: Principal, work_item: Any) -> bool:
        return self.evaluate(principal, "update", work_item).allowed

    def can_delete_work_item(self, principal: Principal, work_item: Any) -> bool:
        return self.evaluate(principal, "delete", work_item).allowed

    def can_manage_lineage(self, principal: Principal, work_item: Any) -> bool:
        return self.evaluate(principal, "manage_lineage", work_item).allowed


# Module-level singleton: import this instance in services.
# In tests, override via:
#   patch.object(policy_gateway, "evaluate", return_value=PolicyDecision(True))
policy_gateway = PolicyGateway()
