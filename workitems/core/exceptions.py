"""
Work-item exception hierarchy.

Every failure the lifecycle engine can classify is one of the types below.
Each carries a stable machine-readable ``code`` and a default HTTP status
so the blueprint can map them once, in a single error handler.

Services raise; the enclosing transaction rolls back; blueprints translate.
Anything that is not a WorkItemError is an internal error.

Usage:
    from workitems.core.exceptions import WorkItemNotFoundError, ValidationError

    raise WorkItemNotFoundError(work_item_id="…")
    raise ValidationError("title is required", details={"title": "required"})
"""


class WorkItemError(Exception):
    """Base class for classified work-item failures."""

    code = "ERR_INTERNAL"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(WorkItemError):
    """Raised when input fails boundary validation (missing type/title, unknown enum value).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"
    http_status = 400


class LineageRequiredError(WorkItemError):
    """Creation denied by policy or by the lineage rule; carries the gateway reason."""

    code = "ERR_LINEAGE_REQUIRED"
    http_status = 409

    def __init__(self, reason: str | None = None, policy_id: str | None = None) -> None:
        self.reason = reason or "Creation denied by lineage policy"
        self.policy_id = policy_id
        super().__init__(self.reason, details={"policy_id": policy_id} if policy_id else None)


class ParentNotFoundError(WorkItemError):
    """Referenced parent is absent or unreadable by the principal."""

    code = "ERR_PARENT_NOT_FOUND"
    http_status = 404

    def __init__(self, parent_id: str | None = None) -> None:
        self.parent_id = parent_id
        super().__init__("Specified parent work item does not exist")


class InvalidHierarchyError(WorkItemError):
    """Parent/child type pair is not permitted by the hierarchy table.

    Args:
        errors: One entry per violated rule, e.g. ``["task cannot contain strategy"]``.
        allowed_children: Types the parent may contain, when a parent is known.
    """

    code = "ERR_INVALID_HIERARCHY"
    http_status = 400

    def __init__(self, errors: list[str], allowed_children: tuple[str, ...] | None = None) -> None:
        self.errors = list(errors)
        self.allowed_children = allowed_children
        details = {"errors": self.errors}
        if allowed_children is not None:
            details["allowed_children"] = list(allowed_children)
        super().__init__(", ".join(self.errors), details=details)


class WorkItemNotFoundError(WorkItemError):
    """Raised when a work item does not exist within the principal's scope.

    Security note: Used for BOTH genuinely missing records AND records the
    principal may not read. A 403 would confirm the item exists; a 404 does not.

    Args:
        work_item_id: The id that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    code = "ERR_NOT_FOUND"
    http_status = 404

    def __init__(self, work_item_id: str | None = None, tenant_id: str | None = None) -> None:
        self.work_item_id = work_item_id
        self.tenant_id = tenant_id
        super().__init__("Work item not found")

    def __str__(self) -> str:
        msg = "WorkItem"
        if self.work_item_id is not None:
            msg += f" id={self.work_item_id}"
        msg += " not found"
        if self.tenant_id is not None:
            msg += f" (tenant={self.tenant_id})"
        return msg


class InsufficientPermissionsError(WorkItemError):
    """Policy denied an update, delete or lineage change."""

    code = "ERR_FORBIDDEN"
    http_status = 403

    def __init__(self, action: str, reason: str | None = None) -> None:
        self.action = action
        self.reason = reason
        msg = f"Insufficient permissions to {action} work item"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CannotDeleteParentError(WorkItemError):
    """Work item still has children; they must be removed or re-parented first."""

    code = "ERR_CANNOT_DELETE_PARENT"
    http_status = 409

    def __init__(self, work_item_id: str, child_count: int) -> None:
        self.work_item_id = work_item_id
        self.child_count = child_count
        super().__init__(
            f"Work item has {child_count} child item(s)",
            details={"child_count": child_count},
        )


class ConflictError(WorkItemError):
    """Raised when a write would violate a uniqueness rule.

    Args:
        resource: Model name.
        field: The unique field (or field pair) that would be duplicated.
        value: The conflicting value.
    """

    code = "ERR_CONFLICT_DUPLICATE"
    http_status = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class UpstreamUnavailableError(WorkItemError):
    """Store (or policy service, where no fallback applies) could not be reached."""

    code = "ERR_UPSTREAM_UNAVAILABLE"
    http_status = 503

    def __init__(self, upstream: str, detail: str | None = None) -> None:
        self.upstream = upstream
        self.detail = detail
        super().__init__(f"{upstream} is unavailable")
