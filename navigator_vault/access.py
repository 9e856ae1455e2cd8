"""
Access Control Evaluator — may this user read or write that entity?

The model is allow-only: tenant administrators, scoped grants, ownership
and shares each add access, and nothing takes it away. Every call reads
the hierarchy and the principal as they are now; no decision is cached.

Evaluation order for (principal, target, operation):
    1. target in another tenant           → deny
    2. tenant administrator               → allow
    3. target or an ancestor is granted   → allow
    4. target or an ancestor created by   → allow
    5. share on target or an ancestor     → allow (read shares: read only)
    6. otherwise                          → deny
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass

from . import hierarchy
from .exceptions import PermissionDenied, ValidationError
from .models import (
    GrantScope,
    Operation,
    Principal,
    SharedEntity,
    ShareAccess,
    VaultEntity,
)

logger = logging.getLogger("navigator.vault")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


class AccessEvaluator:
    """Stateless evaluator over a mapping of live entities."""

    def __init__(self, max_depth: int = 64):
        self.max_depth = max_depth

    def evaluate(
        self,
        principal: Principal,
        target: VaultEntity,
        operation: Operation,
        entities: Mapping[str, VaultEntity],
    ) -> Decision:
        operation = Operation(operation)
        if target.tenant_id != principal.tenant_id:
            return Decision(False, "cross-tenant")
        if principal.is_admin:
            return Decision(True, "admin")
        try:
            chain = [target, *hierarchy.ancestors(entities, target, self.max_depth)]
        except ValidationError:
            # an entity that is not reachable from a live organization is not live
            return Decision(False, "broken-chain")
        for node in chain:
            if principal.has_grant(GrantScope(node.kind.value), node.id):
                return Decision(True, f"grant:{node.kind.value}:{node.id}")
        for node in chain:
            if node.created_by is not None and node.created_by == principal.user_id:
                return Decision(True, f"owner:{node.id}")
        read_share = None
        for node in chain:
            if not isinstance(node, SharedEntity):
                continue
            level = node.shared_with.get(principal.user_id)
            if level is ShareAccess.WRITE:
                return Decision(True, f"share:write:{node.id}")
            if level is ShareAccess.READ and read_share is None:
                read_share = node.id
        if read_share is not None:
            if operation is Operation.READ:
                return Decision(True, f"share:read:{read_share}")
            return Decision(False, f"read-only-share:{read_share}")
        return Decision(False, "no-grant")

    def can(
        self,
        principal: Principal,
        target: VaultEntity,
        operation: Operation,
        entities: Mapping[str, VaultEntity],
    ) -> bool:
        return self.evaluate(principal, target, operation, entities).allowed

    def authorize(
        self,
        principal: Principal,
        target: VaultEntity,
        operation: Operation,
        entities: Mapping[str, VaultEntity],
    ) -> Decision:
        """Like ``evaluate`` but raises ``PermissionDenied`` on deny."""
        decision = self.evaluate(principal, target, operation, entities)
        if not decision:
            logger.warning(
                "Access denied: user=%s tenant=%s %s %s=%s (%s)",
                principal.user_id, principal.tenant_id, Operation(operation).value,
                target.kind.value, target.id, decision.reason,
            )
            raise PermissionDenied(
                f"{Operation(operation).value} access denied",
                {"id": target.id, "kind": target.kind.value},
            )
        return decision

    @staticmethod
    def require_admin(principal: Principal, action: str) -> None:
        if not principal.is_admin:
            logger.warning(
                "Access denied: user=%s tenant=%s is not an administrator (%s)",
                principal.user_id, principal.tenant_id, action,
            )
            raise PermissionDenied(
                f"{action} requires a tenant administrator",
                {"user_id": principal.user_id},
            )
