"""
model.py

Domain models for the MOC Studio Management of Change tracking system.

Entities
--------
- User
- Facility
- Asset
- MOCRequest (with MOCTask, MOCHistoryEntry, Attachment, ImpactFlags)
- RiskAssessment
- WorkOrder
- AuditEntry (with AuditChange)
- RegulatoryStandard
- UsefulLink
- Notification
- Preferences

All models use Python dataclasses for clean, framework-agnostic definitions.
Identifiers are plain strings because several of them are human-meaningful
(MOC numbers, asset tags, auto-generated work order ids).
Timestamps are always stored in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UserRole(str, Enum):
    """Operational roles.  ADMIN bypasses every access rule."""
    ADMIN = "Admin"
    FACILITY_MANAGER = "FacilityManager"
    PROCESS_ENGINEER = "ProcessEngineer"
    MAINTENANCE_TECH = "MaintenanceTech"
    HSE_COORDINATOR = "HSECoordinator"
    APPROVAL_COMMITTEE = "ApprovalCommittee"


class RoleView(str, Enum):
    """Simplified role vocabulary shown at the session / sign-up layer."""
    ENGINEER = "Engineer"
    MANAGER = "Manager"
    AUDITOR = "Auditor"


_ROLE_VIEWS = {
    UserRole.ADMIN: RoleView.MANAGER,
    UserRole.FACILITY_MANAGER: RoleView.MANAGER,
    UserRole.APPROVAL_COMMITTEE: RoleView.MANAGER,
    UserRole.PROCESS_ENGINEER: RoleView.ENGINEER,
    UserRole.MAINTENANCE_TECH: RoleView.ENGINEER,
    UserRole.HSE_COORDINATOR: RoleView.AUDITOR,
}

# Self-registration never grants ADMIN or committee membership.
_REGISTRATION_ROLES = {
    RoleView.ENGINEER: UserRole.PROCESS_ENGINEER,
    RoleView.MANAGER: UserRole.FACILITY_MANAGER,
    RoleView.AUDITOR: UserRole.HSE_COORDINATOR,
}


def role_view(role: UserRole) -> RoleView:
    return _ROLE_VIEWS[role]


def role_for_registration(view: RoleView) -> UserRole:
    return _REGISTRATION_ROLES[view]


class ResourceCategory(str, Enum):
    """Access-controlled resource groups used by the authorization table."""
    FACILITIES = "FACILITIES"
    ASSETS = "ASSETS"
    MOCS = "MOCS"
    RISKS = "RISKS"
    WORK_ORDERS = "WORK_ORDERS"
    ADMIN_USERS = "ADMIN_USERS"
    AUDIT_TRAIL = "AUDIT_TRAIL"
    REFERENCE_LIBRARY = "REFERENCE_LIBRARY"


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"


class FacilityType(str, Enum):
    FPSO = "FPSO"           # Floating production, storage and offloading
    FIXED = "Fixed"
    ONSHORE = "Onshore"


class FacilityStatus(str, Enum):
    ONLINE = "Online"
    OFFLINE = "Offline"
    MAINTENANCE = "Maintenance"


class MOCStatus(str, Enum):
    """
    Approval workflow status of a change request.

    The main line is ordered DRAFT → EVALUATION → APPROVED → IMPLEMENTATION →
    COMPLETED.  REJECTED is a terminal side branch.
    """
    DRAFT = "Draft"
    EVALUATION = "Evaluation"
    APPROVED = "Approved"
    IMPLEMENTATION = "Implementation"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class MOCPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ChangeType(str, Enum):
    MECHANICAL = "Mechanical"
    PROCESS = "Process"
    PROCEDURE = "Procedure"
    PERSONNEL = "Personnel"
    ELECTRICAL = "Electrical"
    INSTRUMENTATION = "Instrumentation"
    CIVIL = "Civil"


class TaskStatus(str, Enum):
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    BLOCKED = "Blocked"
    DONE = "Done"


class TaskPhase(str, Enum):
    PRE = "Pre"     # Pre-implementation check
    POST = "Post"   # Post-implementation check


class HistoryEntryType(str, Enum):
    USER = "user"
    SYSTEM = "system"


class WorkOrderStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DONE = "Done"


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    WRITE = "WRITE"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    # System-originated
    AUTOMATION = "AUTOMATION"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"


class StandardStatus(str, Enum):
    ACTIVE = "Active"
    COMPLIANCE = "Compliance"
    TECHNICAL = "Technical"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class Language(str, Enum):
    EN_US = "en-US"
    PT_BR = "pt-BR"


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


@dataclass
class User:
    """
    A person who can sign in.  `email` is a unique alternate key.

    Users are never hard-deleted; deactivation flips `active` to False.
    """
    id: str = ""
    name: str = ""
    email: str = ""
    role: UserRole = UserRole.PROCESS_ENGINEER
    active: bool = True


# ---------------------------------------------------------------------------
# Plant Entities
# ---------------------------------------------------------------------------


@dataclass
class Attachment:
    name: str = ""
    type: str = ""
    size: int = 0
    data: str = ""      # base64 payload


@dataclass
class Facility:
    """
    An installation (platform, FPSO or onshore plant).

    `address`, `map_url` and `snippet` hold the optional location dossier
    returned by the geocoding collaborator.
    """
    id: str = ""
    name: str = ""
    type: FacilityType = FacilityType.FIXED
    coordinates: Tuple[float, float] = (0.0, 0.0)   # (lat, lng)
    status: FacilityStatus = FacilityStatus.ONLINE
    address: Optional[str] = None
    map_url: Optional[str] = None
    snippet: Optional[str] = None


@dataclass
class AssetParameters:
    """Live process snapshot."""
    temperature: float = 0.0
    pressure: float = 0.0
    flow: float = 0.0


@dataclass
class Asset:
    """
    A tagged piece of equipment.  Updates are keyed by `id`; deletion is keyed
    by the human-meaningful `tag`.
    """
    id: str = ""
    tag: str = ""
    name: str = ""
    facility: str = ""          # FK → Facility.id
    type: str = ""
    category: str = ""
    material: str = ""
    last_maintenance: Optional[date] = None
    parameters: AssetParameters = field(default_factory=AssetParameters)
    attachments: List[Attachment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Change Control Entities
# ---------------------------------------------------------------------------


@dataclass
class ImpactFlags:
    """Independent impact classifications of a change request."""
    safety: bool = False
    environmental: bool = False
    operational: bool = False
    regulatory: bool = False
    emergency: bool = False


@dataclass
class MOCTask:
    id: str = ""
    title: str = ""
    assignee: str = ""
    due_date: Optional[date] = None
    completed: bool = False
    status: TaskStatus = TaskStatus.TO_DO
    type: TaskPhase = TaskPhase.PRE


@dataclass
class MOCHistoryEntry:
    """
    One line of a change request's history.  A rejection is justified by the
    `details` of the newest entry.
    """
    id: str = ""
    user_id: str = ""
    user_name: str = ""
    action: str = ""
    timestamp: datetime = field(default_factory=_utcnow)
    type: HistoryEntryType = HistoryEntryType.USER
    details: str = ""


@dataclass
class RiskAssessment:
    """
    Probability × severity assessment (both on a 1–5 scale).
    `score` is derived on save and never trusted from the caller.
    """
    id: str = ""
    moc_id: str = ""
    probability: int = 1
    severity: int = 1
    score: int = 1
    rationale: str = ""
    assessed_at: datetime = field(default_factory=_utcnow)


@dataclass
class MOCRequest:
    """
    A Management of Change request.

    `history` is kept newest-first: new entries are always inserted at index
    0 and existing entries are never reordered.
    """
    id: str = ""
    title: str = ""
    requester: str = ""
    status: MOCStatus = MOCStatus.DRAFT
    priority: MOCPriority = MOCPriority.MEDIUM
    change_type: ChangeType = ChangeType.PROCESS
    discipline: str = ""
    facility: str = ""          # FK → Facility.id

    impacts: ImpactFlags = field(default_factory=ImpactFlags)
    description: str = ""
    technical_summary: Optional[str] = None
    technical_assessment: Optional[str] = None

    risk_score: int = 0
    risk_assessment: Optional[RiskAssessment] = None

    attachments: List[Attachment] = field(default_factory=list)
    tasks: List[MOCTask] = field(default_factory=list)
    history: List[MOCHistoryEntry] = field(default_factory=list)
    related_asset_tags: List[str] = field(default_factory=list)

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


@dataclass
class WorkOrder:
    """
    An executable maintenance / implementation job.

    `moc_id` is empty for unlinked work orders.  Work orders created by the
    approval cascade carry ids of the form ``WO-AUTO-<epoch millis>``.
    """
    id: str = ""
    moc_id: str = ""
    title: str = ""
    assigned_to: str = ""
    due_date: Optional[date] = None
    status: WorkOrderStatus = WorkOrderStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Audit & Notification Entities
# ---------------------------------------------------------------------------


@dataclass
class AuditChange:
    field: str = ""
    old_value: Any = None
    new_value: Any = None


@dataclass
class AuditEntry:
    """
    Immutable record of a login, logout, write, denial or automation.

    The audit trail is a capped ring buffer: newest entries are prepended and
    the oldest are evicted once the cap is reached.  Entries are never edited.
    """
    id: str = ""
    user_id: str = ""
    user_name: str = ""
    user_role: str = ""
    action: AuditAction = AuditAction.WRITE
    resource: str = ""
    timestamp: datetime = field(default_factory=_utcnow)
    details: Optional[str] = None
    changes: Optional[List[AuditChange]] = None


@dataclass
class Notification:
    id: str = ""
    title: str = ""
    message: str = ""
    type: NotificationType = NotificationType.INFO
    timestamp: datetime = field(default_factory=_utcnow)
    read: bool = False
    link: Optional[str] = None


# ---------------------------------------------------------------------------
# Reference Library
# ---------------------------------------------------------------------------


@dataclass
class RegulatoryStandard:
    id: str = ""
    code: str = ""
    title: str = ""
    status: StandardStatus = StandardStatus.ACTIVE
    description: str = ""
    link: Optional[str] = None


@dataclass
class UsefulLink:
    id: str = ""
    label: str = ""
    url: str = ""
    icon: str = ""      # key into the client's icon map


@dataclass
class Preferences:
    language: Language = Language.EN_US
    theme: Theme = Theme.LIGHT


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeoLocation:
    """Result of a facility location lookup."""
    lat: float
    lng: float
    address: Optional[str] = None
    map_url: Optional[str] = None
    snippet: Optional[str] = None
