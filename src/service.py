"""
service.py

Service layer for the MOC Studio Management of Change tracking system.

Responsibilities
----------------
Each service class encapsulates the business rules of its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here — the application layer loads records
through repositories, hands them to a service, and stores what comes back.

Services
--------
- AuthorizationService    – static role table with the Admin override
- TokenService            – signed access / refresh session tokens
- AuditService            – field-level diffs and audit entry construction
- MOCStateMachine         – (from, to) status edges → guards and side effects
- MOCTransitionService    – applies an MOC update and builds its cascade
- MOCService              – change request creation and numbering
- WorkOrderService        – manual work orders and bulk linking
- RiskService             – probability × severity scoring
- UserService             – user provisioning rules
- NotificationService     – client notification entries
- GeocodingService        – location lookup with a mandatory fallback

Design notes
------------
- UTC datetimes are used throughout; every service that stamps time accepts
  an injectable clock.
- Business rule violations raise a ValueError with a descriptive message;
  the application layer translates them into ValidationError.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

import jwt
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from model import (
    AuditAction,
    AuditChange,
    AuditEntry,
    GeoLocation,
    HistoryEntryType,
    MOCHistoryEntry,
    MOCRequest,
    MOCStatus,
    Notification,
    NotificationType,
    Operation,
    ResourceCategory,
    RiskAssessment,
    User,
    UserRole,
    WorkOrder,
    WorkOrderStatus,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _short_uid() -> str:
    return uuid.uuid4().hex[:9]


def unique_id(base: str, existing_ids: Sequence[str]) -> str:
    """Return `base`, or `base-2`, `base-3`, ... when `base` is already taken."""
    taken = set(existing_ids)
    candidate, suffix = base, 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def next_sequence_id(prefix: str, existing_ids: Sequence[str]) -> str:
    """
    Next `<prefix>-NNN` identifier after the highest sequence in use.

    Identifiers with a non-numeric tail are ignored, so deleting a record
    never makes a live identifier the next one handed out.
    """
    highest = 0
    for existing in existing_ids:
        head, _, tail = existing.rpartition("-")
        if head == prefix and tail.isdigit():
            highest = max(highest, int(tail))
    return f"{prefix}-{highest + 1:03d}"


# ---------------------------------------------------------------------------
# AuthorizationService
# ---------------------------------------------------------------------------

_ALL_ROLES: FrozenSet[UserRole] = frozenset(UserRole)

RBAC_RULES: Dict[ResourceCategory, Dict[Operation, FrozenSet[UserRole]]] = {
    ResourceCategory.FACILITIES: {
        Operation.READ: frozenset({UserRole.ADMIN, UserRole.FACILITY_MANAGER, UserRole.PROCESS_ENGINEER}),
        Operation.WRITE: frozenset({UserRole.ADMIN, UserRole.FACILITY_MANAGER}),
    },
    ResourceCategory.ASSETS: {
        Operation.READ: frozenset({UserRole.ADMIN, UserRole.FACILITY_MANAGER, UserRole.MAINTENANCE_TECH}),
        Operation.WRITE: frozenset({UserRole.ADMIN, UserRole.FACILITY_MANAGER, UserRole.MAINTENANCE_TECH}),
    },
    ResourceCategory.MOCS: {
        Operation.READ: frozenset({
            UserRole.ADMIN,
            UserRole.FACILITY_MANAGER,
            UserRole.PROCESS_ENGINEER,
            UserRole.HSE_COORDINATOR,
            UserRole.APPROVAL_COMMITTEE,
        }),
        Operation.WRITE: frozenset({
            UserRole.ADMIN,
            UserRole.PROCESS_ENGINEER,
            UserRole.FACILITY_MANAGER,
            UserRole.APPROVAL_COMMITTEE,
        }),
    },
    ResourceCategory.RISKS: {
        Operation.READ: frozenset({UserRole.ADMIN, UserRole.PROCESS_ENGINEER, UserRole.HSE_COORDINATOR}),
        Operation.WRITE: frozenset({UserRole.ADMIN, UserRole.PROCESS_ENGINEER, UserRole.HSE_COORDINATOR}),
    },
    ResourceCategory.WORK_ORDERS: {
        Operation.READ: frozenset({UserRole.ADMIN, UserRole.MAINTENANCE_TECH, UserRole.FACILITY_MANAGER}),
        Operation.WRITE: frozenset({UserRole.ADMIN, UserRole.MAINTENANCE_TECH}),
    },
    ResourceCategory.ADMIN_USERS: {
        Operation.READ: frozenset({UserRole.ADMIN}),
        Operation.WRITE: frozenset({UserRole.ADMIN}),
    },
    ResourceCategory.AUDIT_TRAIL: {
        Operation.READ: frozenset({UserRole.ADMIN}),
        Operation.WRITE: frozenset({UserRole.ADMIN}),
    },
    ResourceCategory.REFERENCE_LIBRARY: {
        Operation.READ: _ALL_ROLES,
        Operation.WRITE: _ALL_ROLES,
    },
}


class AuthorizationService:
    """
    Pure membership test against RBAC_RULES.  ADMIN passes every check; there
    is no other role inheritance.  A denial is reported as False, never raised.
    """

    def __init__(
        self,
        rules: Optional[Dict[ResourceCategory, Dict[Operation, FrozenSet[UserRole]]]] = None,
    ) -> None:
        self._rules = rules if rules is not None else RBAC_RULES

    def authorize(self, resource: ResourceCategory, operation: Operation, user: User) -> bool:
        if user.role == UserRole.ADMIN:
            return True
        allowed = self._rules.get(resource, {}).get(operation, frozenset())
        return user.role in allowed

    def allowed_roles(self, resource: ResourceCategory, operation: Operation) -> FrozenSet[UserRole]:
        return self._rules.get(resource, {}).get(operation, frozenset())

    @staticmethod
    def denial_details(user: User, resource: ResourceCategory, operation: Operation) -> str:
        return (
            f"DENIED ATTEMPT: {user.name} ({user.role.value}) tried to "
            f"{operation.value} {resource.value}"
        )


# ---------------------------------------------------------------------------
# TokenService
# ---------------------------------------------------------------------------

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

_user_adapter = TypeAdapter(User)


class TokenService:
    """
    Mints and decodes session tokens.

    Tokens are HS256-signed JWTs.  Access tokens embed a full user snapshot;
    refresh tokens only carry the user id.  Expiry is checked against this
    service's clock (a token is expired at or after its ``exp`` instant) so
    ``PyJWT``'s own wall-clock checks are disabled.

    The embedded snapshot is trusted verbatim by validate(): a role change or
    deactivation made after issue is not visible until the token is refreshed
    or expires.  The application layer can opt into live re-validation.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Clock = _utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    # --- Minting ------------------------------------------------------------

    def mint_access_token(self, user: User) -> str:
        now = self._clock()
        payload = {
            "user": to_jsonable_python(user),
            "iat": now.timestamp(),
            "exp": (now + self._access_ttl).timestamp(),
            "type": ACCESS_TOKEN,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def mint_refresh_token(self, user: User) -> str:
        now = self._clock()
        payload = {
            "sub": user.id,
            "iat": now.timestamp(),
            "exp": (now + self._refresh_ttl).timestamp(),
            "type": REFRESH_TOKEN,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    # --- Decoding -----------------------------------------------------------

    def decode(self, token: Optional[str], expected_type: str) -> Optional[Dict[str, Any]]:
        """Return the claims of a well-formed, unexpired token of the given type."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except jwt.PyJWTError:
            return None
        if claims.get("type") != expected_type:
            return None
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return None
        if self._clock().timestamp() >= exp:
            return None
        return claims

    def validate(self, token: Optional[str]) -> Optional[User]:
        """Return the user embedded in a valid access token, or None."""
        claims = self.decode(token, ACCESS_TOKEN)
        if claims is None:
            return None
        try:
            return _user_adapter.validate_python(claims.get("user"))
        except PydanticValidationError:
            return None

    def refresh_subject(self, token: Optional[str]) -> Optional[str]:
        """Return the user id carried by a valid refresh token, or None."""
        claims = self.decode(token, REFRESH_TOKEN)
        if claims is None:
            return None
        subject = claims.get("sub")
        return subject if isinstance(subject, str) and subject else None


# ---------------------------------------------------------------------------
# AuditService
# ---------------------------------------------------------------------------

SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_NAME = "MOC AUTOMATION"

# Bookkeeping fields that never show up in a diff.
DIFF_IGNORED_FIELDS: FrozenSet[str] = frozenset({"history", "updated_at", "id"})


@lru_cache(maxsize=None)
def _declared_fields(entity_type: type) -> Tuple[str, ...]:
    return tuple(f.name for f in dataclasses.fields(entity_type))


class AuditService:
    """
    Builds audit entries and field-level diffs.  Entries are immutable once
    built; storing them (and evicting the oldest) is the repository's job.
    """

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock

    def diff(self, old: Any, new: Any) -> List[AuditChange]:
        """
        Compare two versions of the same entity type field by field.

        The compared field set is the union of the dataclass fields declared
        by both types, minus DIFF_IGNORED_FIELDS.  Values are compared by deep
        equality.
        """
        if not (dataclasses.is_dataclass(old) and dataclasses.is_dataclass(new)):
            raise ValueError("diff() expects two dataclass entities.")

        names: List[str] = []
        for name in _declared_fields(type(old)) + _declared_fields(type(new)):
            if name not in names and name not in DIFF_IGNORED_FIELDS:
                names.append(name)

        changes: List[AuditChange] = []
        for name in names:
            old_value = to_jsonable_python(getattr(old, name, None))
            new_value = to_jsonable_python(getattr(new, name, None))
            if old_value != new_value:
                changes.append(AuditChange(field=name, old_value=old_value, new_value=new_value))
        return changes

    def build_entry(
        self,
        actor: User,
        action: AuditAction,
        resource: str,
        details: Optional[str] = None,
        changes: Optional[List[AuditChange]] = None,
    ) -> AuditEntry:
        now = self._clock()
        return AuditEntry(
            id=f"log-{_millis(now)}-{_short_uid()}",
            user_id=actor.id,
            user_name=actor.name,
            user_role=actor.role.value,
            action=action,
            resource=resource,
            timestamp=now,
            details=details,
            changes=copy.deepcopy(changes) if changes else None,
        )

    def build_system_entry(
        self,
        action: AuditAction,
        resource: str,
        details: Optional[str] = None,
    ) -> AuditEntry:
        now = self._clock()
        return AuditEntry(
            id=f"log-{_millis(now)}-{_short_uid()}",
            user_id=SYSTEM_ACTOR_ID,
            user_name=SYSTEM_ACTOR_NAME,
            user_role=SYSTEM_ACTOR_ID,
            action=action,
            resource=resource,
            timestamp=now,
            details=details,
        )


# ---------------------------------------------------------------------------
# MOCStateMachine
# ---------------------------------------------------------------------------

class Guard(str, Enum):
    REQUIRE_JUSTIFICATION = "require_justification"


class SideEffect(str, Enum):
    GENERATE_WORK_ORDER = "generate_work_order"


@dataclass(frozen=True)
class Transition:
    source: MOCStatus
    target: MOCStatus
    guards: Tuple[Guard, ...] = ()
    effects: Tuple[SideEffect, ...] = ()


def _build_transition_table() -> Dict[Tuple[MOCStatus, MOCStatus], Transition]:
    """
    Every (source, target) pair is a legal edge; edges differ only in their
    guards and side effects.  Re-saving without a status change is the
    (s, s) edge.
    """
    table: Dict[Tuple[MOCStatus, MOCStatus], Transition] = {}
    for source in MOCStatus:
        for target in MOCStatus:
            guards: Tuple[Guard, ...] = ()
            effects: Tuple[SideEffect, ...] = ()
            if target == MOCStatus.REJECTED:
                guards = (Guard.REQUIRE_JUSTIFICATION,)
            if target == MOCStatus.APPROVED and source != MOCStatus.APPROVED:
                effects = (SideEffect.GENERATE_WORK_ORDER,)
            table[(source, target)] = Transition(source, target, guards, effects)
    return table


class MOCStateMachine:
    """Lookup table of MOC status edges."""

    def __init__(self) -> None:
        self._table = _build_transition_table()

    def transition(self, source: MOCStatus, target: MOCStatus) -> Transition:
        return self._table[(source, target)]

    def edges_with_effect(self, effect: SideEffect) -> List[Transition]:
        return [t for t in self._table.values() if effect in t.effects]


# ---------------------------------------------------------------------------
# MOCTransitionService
# ---------------------------------------------------------------------------

WORK_ORDER_TITLE_PREFIX = "IMPLEMENTATION: "
PENDING_ASSIGNEE = "Technical lead (pending)"


@dataclass
class TransitionResult:
    """
    Outcome of MOCTransitionService.apply_update.

    `moc` is the record to persist first (updated_at stamped, history as
    proposed).  When the edge generates a work order, `work_order` and
    `history_entry` are set and the caller prepends the entry and persists
    the MOC a second time.
    """
    moc: MOCRequest
    transition: Transition
    work_order: Optional[WorkOrder] = None
    history_entry: Optional[MOCHistoryEntry] = None


class MOCTransitionService:
    """
    Applies a proposed MOC version on top of the stored one.

    Rules enforced:
    - Any edge into REJECTED requires the newest history entry to carry a
      non-empty justification in `details`.
    - A fresh edge into APPROVED (from any other status) generates exactly one
      work order, linked to the MOC, and one system history entry naming it.
    """

    def __init__(
        self,
        state_machine: Optional[MOCStateMachine] = None,
        due_days: int = 7,
        clock: Clock = _utcnow,
    ) -> None:
        self._machine = state_machine or MOCStateMachine()
        self._due_days = due_days
        self._clock = clock

    def check_guards(self, transition: Transition, proposed: MOCRequest) -> None:
        for guard in transition.guards:
            if guard == Guard.REQUIRE_JUSTIFICATION:
                newest = proposed.history[0] if proposed.history else None
                if newest is None or not newest.details:
                    raise ValueError(
                        "A technical justification is required to reject an MOC: "
                        "the newest history entry must carry details."
                    )

    def apply_update(
        self,
        existing: MOCRequest,
        proposed: MOCRequest,
        existing_work_order_ids: Sequence[str] = (),
    ) -> TransitionResult:
        transition = self._machine.transition(existing.status, proposed.status)
        self.check_guards(transition, proposed)

        now = self._clock()
        applied = copy.deepcopy(proposed)
        applied.updated_at = now
        result = TransitionResult(moc=applied, transition=transition)

        if SideEffect.GENERATE_WORK_ORDER in transition.effects:
            work_order = self.build_work_order(applied, now, existing_work_order_ids)
            result.work_order = work_order
            result.history_entry = self.build_system_history(work_order, now)
        return result

    def build_work_order(
        self, moc: MOCRequest, now: datetime, existing_ids: Sequence[str] = ()
    ) -> WorkOrder:
        return WorkOrder(
            id=unique_id(f"WO-AUTO-{_millis(now)}", existing_ids),
            moc_id=moc.id,
            title=f"{WORK_ORDER_TITLE_PREFIX}{moc.title}",
            assigned_to=PENDING_ASSIGNEE,
            due_date=now.date() + timedelta(days=self._due_days),
            status=WorkOrderStatus.PENDING,
            created_at=now,
        )

    @staticmethod
    def build_system_history(work_order: WorkOrder, now: datetime) -> MOCHistoryEntry:
        return MOCHistoryEntry(
            id=f"hist-auto-{_millis(now)}",
            user_id=SYSTEM_ACTOR_ID,
            user_name=SYSTEM_ACTOR_NAME,
            action="Work order generated automatically",
            timestamp=now,
            type=HistoryEntryType.SYSTEM,
            details=(
                f"Approval triggered the creation of work order {work_order.id} "
                "to execute the technical scope."
            ),
        )


# ---------------------------------------------------------------------------
# MOCService
# ---------------------------------------------------------------------------

class MOCService:
    """Change request creation and numbering."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock

    def next_id(self, existing_ids: Sequence[str]) -> str:
        year = self._clock().year
        taken = set(existing_ids)
        seq = sum(1 for i in taken if i.startswith(f"MOC-{year}-")) + 1
        while f"MOC-{year}-{seq:03d}" in taken:
            seq += 1
        return f"MOC-{year}-{seq:03d}"

    def prepare_new(self, moc: MOCRequest, existing_ids: Sequence[str]) -> MOCRequest:
        if not moc.title.strip():
            raise ValueError("An MOC must have a title.")
        if moc.id and moc.id in existing_ids:
            raise ValueError(f"MOC {moc.id} already exists.")
        prepared = copy.deepcopy(moc)
        if not prepared.id:
            prepared.id = self.next_id(existing_ids)
        prepared.created_at = self._clock()
        prepared.updated_at = None
        return prepared


# ---------------------------------------------------------------------------
# WorkOrderService
# ---------------------------------------------------------------------------

class WorkOrderService:
    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock

    def prepare_new(self, work_order: WorkOrder, existing_ids: Sequence[str]) -> WorkOrder:
        if not work_order.title.strip():
            raise ValueError("A work order must have a title.")
        if work_order.id and work_order.id in existing_ids:
            raise ValueError(f"Work order {work_order.id} already exists.")
        prepared = copy.deepcopy(work_order)
        now = self._clock()
        if not prepared.id:
            prepared.id = unique_id(f"WO-{_millis(now)}", existing_ids)
        prepared.created_at = now
        return prepared

    @staticmethod
    def link(work_orders: List[WorkOrder], work_order_ids: Sequence[str], moc_id: str) -> List[WorkOrder]:
        """Return the work orders whose id is listed, relinked to `moc_id`."""
        wanted = set(work_order_ids)
        linked: List[WorkOrder] = []
        for wo in work_orders:
            if wo.id in wanted:
                wo.moc_id = moc_id
                linked.append(wo)
        return linked

    @staticmethod
    def is_unlinked(work_order: WorkOrder) -> bool:
        return not work_order.moc_id


# ---------------------------------------------------------------------------
# RiskService
# ---------------------------------------------------------------------------

class RiskService:
    SCALE = range(1, 6)

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock

    def assess(self, risk: RiskAssessment, existing_ids: Sequence[str] = ()) -> RiskAssessment:
        """Validate the 1–5 scales and derive the score."""
        if risk.probability not in self.SCALE or risk.severity not in self.SCALE:
            raise ValueError("probability and severity must both be between 1 and 5.")
        assessed = copy.deepcopy(risk)
        if not assessed.id:
            assessed.id = unique_id(f"RISK-{_millis(self._clock())}", existing_ids)
        assessed.score = risk.probability * risk.severity
        assessed.assessed_at = self._clock()
        return assessed


# ---------------------------------------------------------------------------
# UserService
# ---------------------------------------------------------------------------

class UserService:
    """User provisioning rules (admin creation and self-registration)."""

    def create_user(self, name: str, email: str, role: UserRole, user_id: str = "") -> User:
        if not name.strip():
            raise ValueError("User name must not be empty.")
        if "@" not in email:
            raise ValueError(f"'{email}' does not appear to be a valid email address.")
        return User(
            id=user_id or f"U-{uuid.uuid4().hex[:8]}",
            name=name.strip(),
            email=email,
            role=role,
            active=True,
        )


# ---------------------------------------------------------------------------
# NotificationService
# ---------------------------------------------------------------------------

class NotificationService:
    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock

    def build(
        self,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        link: Optional[str] = None,
    ) -> Notification:
        now = self._clock()
        return Notification(
            id=f"{_millis(now)}-{_short_uid()}",
            title=title,
            message=message,
            type=type,
            timestamp=now,
            read=False,
            link=link,
        )


# ---------------------------------------------------------------------------
# GeocodingService
# ---------------------------------------------------------------------------

FALLBACK_LOCATION = GeoLocation(
    lat=-22.5,
    lng=-40.5,
    address="Campos Basin (approximate)",
    snippet="Location based on regional offshore history.",
)


class GeocodingService:
    """
    Wraps the external geocoder.  Lookups never fail: any error, or a missing
    geocoder, yields FALLBACK_LOCATION so facility flows never block.
    """

    def __init__(self, geocoder: Any = None) -> None:
        self._geocoder = geocoder

    def locate(self, query: str) -> GeoLocation:
        if self._geocoder is None or not query.strip():
            return FALLBACK_LOCATION
        try:
            return self._geocoder.lookup(query)
        except Exception as exc:
            logger.warning("Geocoding failed for %r, using fallback location: %s", query, exc)
            return FALLBACK_LOCATION
