"""
infrastructure.py

Storage and collaborator implementations for all interfaces in application.py.

Two databases are provided:

  InMemoryDatabase   – plain Python dicts and deques; the default, and what
                       the tests use.
  JsonFileDatabase   – the same layout, loaded from and flushed to a single
                       JSON file under fixed string keys (``moc_facilities``,
                       ``moc_requests``, ...).  Selected with MOC_STORAGE_PATH.

Every collection is seeded with the default plant data when its key is absent.

InMemoryUnitOfWork serializes all units of work in the process behind one
re-entrant lock, snapshots the database on entry and restores the snapshot on
rollback, so a failed call leaves no partial writes behind.

To swap in another backend, implement the Abstract* interfaces from
application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: MyUnitOfWork(...)
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from collections import deque
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import TypeAdapter

from application import (
    AbstractAssetRepository,
    AbstractAuditTrailRepository,
    AbstractFacilityRepository,
    AbstractGeocoder,
    AbstractLinkRepository,
    AbstractMOCRepository,
    AbstractNotificationRepository,
    AbstractPreferencesRepository,
    AbstractRiskRepository,
    AbstractSessionRepository,
    AbstractStandardRepository,
    AbstractUnitOfWork,
    AbstractUserRepository,
    AbstractWorkOrderRepository,
)
from model import (
    Asset,
    AssetParameters,
    AuditEntry,
    ChangeType,
    Facility,
    FacilityStatus,
    FacilityType,
    GeoLocation,
    HistoryEntryType,
    ImpactFlags,
    Language,
    MOCHistoryEntry,
    MOCPriority,
    MOCRequest,
    MOCStatus,
    MOCTask,
    Notification,
    Preferences,
    RegulatoryStandard,
    RiskAssessment,
    StandardStatus,
    TaskPhase,
    TaskStatus,
    Theme,
    UsefulLink,
    User,
    UserRole,
    WorkOrder,
    WorkOrderStatus,
)
from settings import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Storage keys
# ---------------------------------------------------------------------------

KEY_FACILITIES = "moc_facilities"
KEY_ASSETS = "moc_assets"
KEY_MOCS = "moc_requests"
KEY_RISKS = "moc_risks"
KEY_WORK_ORDERS = "moc_work_orders"
KEY_USERS = "moc_users"
KEY_STANDARDS = "moc_standards"
KEY_LINKS = "moc_links"
KEY_AUDIT_TRAIL = "moc_audit_trail"
KEY_NOTIFICATIONS = "moc_studio_notifications"
KEY_TOKEN = "moc_token"
KEY_REFRESH_TOKEN = "moc_refresh_token"
KEY_CURRENT_USER = "moc_current_user"
KEY_LANGUAGE = "moc_lang"
KEY_THEME = "moc_theme"


# ---------------------------------------------------------------------------
# Default plant data
# ---------------------------------------------------------------------------

_SEED_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _seed_users() -> List[User]:
    return [
        User(id="U-001", name="Alice Ward", email="admin@mocstudio.io", role=UserRole.ADMIN),
        User(id="U-002", name="Marcus Reyes", email="manager@mocstudio.io", role=UserRole.FACILITY_MANAGER),
        User(id="U-003", name="Priya Natarajan", email="engineer@mocstudio.io", role=UserRole.PROCESS_ENGINEER),
        User(id="U-004", name="Tomas Silva", email="tech@mocstudio.io", role=UserRole.MAINTENANCE_TECH),
        User(id="U-005", name="Hannah Okafor", email="hse@mocstudio.io", role=UserRole.HSE_COORDINATOR),
        User(id="U-006", name="Kenji Mori", email="committee@mocstudio.io", role=UserRole.APPROVAL_COMMITTEE),
        User(
            id="U-007",
            name="Rui Costa",
            email="former@mocstudio.io",
            role=UserRole.PROCESS_ENGINEER,
            active=False,
        ),
    ]


def _seed_facilities() -> List[Facility]:
    return [
        Facility(
            id="FAC-001",
            name="P-74 FPSO",
            type=FacilityType.FPSO,
            coordinates=(-22.61, -40.32),
            status=FacilityStatus.ONLINE,
        ),
        Facility(
            id="FAC-002",
            name="PCH-1 Fixed Platform",
            type=FacilityType.FIXED,
            coordinates=(-22.38, -40.05),
            status=FacilityStatus.MAINTENANCE,
        ),
        Facility(
            id="FAC-003",
            name="Cabiunas Onshore Terminal",
            type=FacilityType.ONSHORE,
            coordinates=(-22.29, -41.73),
            status=FacilityStatus.ONLINE,
        ),
    ]


def _seed_assets() -> List[Asset]:
    return [
        Asset(
            id="AST-001",
            tag="P-101A",
            name="Crude Transfer Pump A",
            facility="FAC-001",
            type="Centrifugal Pump",
            category="Rotating",
            material="Duplex SS",
            last_maintenance=date(2024, 1, 15),
            parameters=AssetParameters(temperature=68.0, pressure=12.5, flow=340.0),
        ),
        Asset(
            id="AST-002",
            tag="V-201",
            name="HP Production Separator",
            facility="FAC-001",
            type="Three-phase Separator",
            category="Static",
            material="Carbon Steel",
            last_maintenance=date(2023, 11, 2),
            parameters=AssetParameters(temperature=85.0, pressure=32.0, flow=1200.0),
        ),
        Asset(
            id="AST-003",
            tag="K-301",
            name="Gas Export Compressor",
            facility="FAC-002",
            type="Centrifugal Compressor",
            category="Rotating",
            material="Alloy Steel",
            parameters=AssetParameters(temperature=120.0, pressure=95.0, flow=2500.0),
        ),
    ]


def _seed_mocs() -> List[MOCRequest]:
    return [
        MOCRequest(
            id="MOC-2024-001",
            title="Replace P-101A mechanical seal with dual seal arrangement",
            requester="Priya Natarajan",
            status=MOCStatus.EVALUATION,
            priority=MOCPriority.HIGH,
            change_type=ChangeType.MECHANICAL,
            discipline="Mechanical",
            facility="FAC-001",
            impacts=ImpactFlags(safety=True, operational=True),
            description="Repeated seal leaks on the crude transfer pump.",
            risk_score=12,
            tasks=[
                MOCTask(
                    id="TSK-001",
                    title="Update P&ID",
                    assignee="Priya Natarajan",
                    due_date=date(2024, 3, 20),
                    status=TaskStatus.IN_PROGRESS,
                    type=TaskPhase.PRE,
                ),
            ],
            history=[
                MOCHistoryEntry(
                    id="hist-001",
                    user_id="U-003",
                    user_name="Priya Natarajan",
                    action="Submitted for evaluation",
                    timestamp=_SEED_TIME,
                    type=HistoryEntryType.USER,
                ),
            ],
            related_asset_tags=["P-101A"],
            created_at=_SEED_TIME,
        ),
        MOCRequest(
            id="MOC-2024-002",
            title="Raise V-201 high-pressure trip setpoint",
            requester="Marcus Reyes",
            status=MOCStatus.DRAFT,
            priority=MOCPriority.MEDIUM,
            change_type=ChangeType.PROCESS,
            discipline="Process",
            facility="FAC-001",
            impacts=ImpactFlags(safety=True, regulatory=True),
            description="Operating envelope review after debottlenecking.",
            related_asset_tags=["V-201"],
            created_at=_SEED_TIME,
        ),
    ]


def _seed_work_orders() -> List[WorkOrder]:
    return [
        WorkOrder(
            id="WO-1001",
            moc_id="MOC-2024-001",
            title="Isolate and drain P-101A",
            assigned_to="Tomas Silva",
            due_date=date(2024, 3, 25),
            status=WorkOrderStatus.PENDING,
            created_at=_SEED_TIME,
        ),
        WorkOrder(
            id="WO-1002",
            title="Quarterly vibration survey K-301",
            assigned_to="Tomas Silva",
            due_date=date(2024, 4, 10),
            status=WorkOrderStatus.IN_PROGRESS,
            created_at=_SEED_TIME,
        ),
    ]


def _seed_standards() -> List[RegulatoryStandard]:
    return [
        RegulatoryStandard(
            id="STD-NR-13",
            code="NR-13",
            title="Boilers, pressure vessels and piping",
            status=StandardStatus.COMPLIANCE,
            description="Inspection and integrity requirements for pressure equipment.",
        ),
        RegulatoryStandard(
            id="STD-API-RP-754",
            code="API RP 754",
            title="Process Safety Performance Indicators",
            status=StandardStatus.TECHNICAL,
            description="Tier 1 and Tier 2 process safety event reporting.",
        ),
    ]


def _seed_links() -> List[UsefulLink]:
    return [
        UsefulLink(id="LNK-001", label="ANP Regulations", url="https://www.gov.br/anp", icon="shield"),
        UsefulLink(id="LNK-002", label="CCPS Process Safety", url="https://www.aiche.org/ccps", icon="book"),
    ]


# key → (attribute on the database, seed factory, collection adapter)
_COLLECTIONS: Dict[str, Tuple[str, Callable[[], list], TypeAdapter]] = {
    KEY_FACILITIES: ("facilities", _seed_facilities, TypeAdapter(List[Facility])),
    KEY_ASSETS: ("assets", _seed_assets, TypeAdapter(List[Asset])),
    KEY_MOCS: ("mocs", _seed_mocs, TypeAdapter(List[MOCRequest])),
    KEY_RISKS: ("risks", list, TypeAdapter(List[RiskAssessment])),
    KEY_WORK_ORDERS: ("work_orders", _seed_work_orders, TypeAdapter(List[WorkOrder])),
    KEY_USERS: ("users", _seed_users, TypeAdapter(List[User])),
    KEY_STANDARDS: ("standards", _seed_standards, TypeAdapter(List[RegulatoryStandard])),
    KEY_LINKS: ("links", _seed_links, TypeAdapter(List[UsefulLink])),
}

_audit_adapter = TypeAdapter(List[AuditEntry])
_notification_adapter = TypeAdapter(List[Notification])
_user_adapter = TypeAdapter(Optional[User])


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A dict keyed by entity id.  Records go in and come out as copies."""

    def fetch(self, key: str):
        obj = self.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    def put(self, obj) -> None:
        self[obj.id] = copy.deepcopy(obj)

    def remove(self, key: str) -> None:
        self.pop(key, None)

    def all(self) -> list:
        return [copy.deepcopy(v) for v in self.values()]

    def load(self, records: list) -> None:
        self.clear()
        for record in records:
            self.put(record)


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    """
    All state of one MOC Studio instance.

    `audit_trail` and `notifications` are newest-first deques whose maxlen
    evicts the oldest entry.  `kv` holds the session and preference keys.
    """

    def __init__(self, audit_capacity: int = 1000, notification_capacity: int = 50, seed: bool = True):
        self.facilities:  _Store = _Store()
        self.assets:      _Store = _Store()
        self.mocs:        _Store = _Store()
        self.risks:       _Store = _Store()
        self.work_orders: _Store = _Store()
        self.users:       _Store = _Store()
        self.standards:   _Store = _Store()
        self.links:       _Store = _Store()
        self.audit_trail:   deque = deque(maxlen=audit_capacity)
        self.notifications: deque = deque(maxlen=notification_capacity)
        self.kv: Dict[str, Any] = {}
        self.lock = threading.RLock()
        if seed:
            for attr, factory, _ in _COLLECTIONS.values():
                getattr(self, attr).load(factory())

    def _containers(self) -> Dict[str, Any]:
        containers: Dict[str, Any] = {attr: getattr(self, attr) for attr, _, _ in _COLLECTIONS.values()}
        containers["audit_trail"] = self.audit_trail
        containers["notifications"] = self.notifications
        containers["kv"] = self.kv
        return containers

    def snapshot(self) -> Dict[str, Any]:
        # Shallow: repositories copy records on the way in and out, so a
        # stored record is only ever replaced, never mutated in place.
        return {name: dict(c) if isinstance(c, dict) else list(c)
                for name, c in self._containers().items()}

    def restore(self, state: Dict[str, Any]) -> None:
        # In place: repositories keep references to these containers.
        for name, container in self._containers().items():
            container.clear()
            if isinstance(container, dict):
                container.update(state[name])
            else:
                container.extend(state[name])

    def flush(self) -> None:
        """Persist committed state.  Nothing to do in memory."""


class JsonFileDatabase(InMemoryDatabase):
    """
    InMemoryDatabase backed by one JSON document.  Loaded once on
    construction, rewritten atomically on every commit.
    """

    def __init__(self, path: str, audit_capacity: int = 1000, notification_capacity: int = 50):
        super().__init__(audit_capacity, notification_capacity, seed=False)
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        document: Dict[str, Any] = {}
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
            logger.info("Loaded MOC Studio data from %s", self.path)

        for key, (attr, factory, adapter) in _COLLECTIONS.items():
            records = adapter.validate_python(document[key]) if key in document else factory()
            getattr(self, attr).load(records)

        # Stored newest first; keep the head when the file exceeds capacity.
        audit = _audit_adapter.validate_python(document.get(KEY_AUDIT_TRAIL, []))
        self.audit_trail.extend(audit[: self.audit_trail.maxlen])
        notifications = _notification_adapter.validate_python(document.get(KEY_NOTIFICATIONS, []))
        self.notifications.extend(notifications[: self.notifications.maxlen])
        for key in (KEY_TOKEN, KEY_REFRESH_TOKEN):
            if document.get(key):
                self.kv[key] = document[key]
        current = _user_adapter.validate_python(document.get(KEY_CURRENT_USER))
        if current is not None:
            self.kv[KEY_CURRENT_USER] = current
        if KEY_LANGUAGE in document:
            self.kv[KEY_LANGUAGE] = Language(document[KEY_LANGUAGE])
        if KEY_THEME in document:
            self.kv[KEY_THEME] = Theme(document[KEY_THEME])

    def _document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        for key, (attr, _, adapter) in _COLLECTIONS.items():
            document[key] = adapter.dump_python(list(getattr(self, attr).values()), mode="json")
        document[KEY_AUDIT_TRAIL] = _audit_adapter.dump_python(list(self.audit_trail), mode="json")
        document[KEY_NOTIFICATIONS] = _notification_adapter.dump_python(list(self.notifications), mode="json")
        for key in (KEY_TOKEN, KEY_REFRESH_TOKEN):
            if key in self.kv:
                document[key] = self.kv[key]
        if KEY_CURRENT_USER in self.kv:
            document[KEY_CURRENT_USER] = _user_adapter.dump_python(self.kv[KEY_CURRENT_USER], mode="json")
        if KEY_LANGUAGE in self.kv:
            document[KEY_LANGUAGE] = self.kv[KEY_LANGUAGE].value
        if KEY_THEME in self.kv:
            document[KEY_THEME] = self.kv[KEY_THEME].value
        return document

    def flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(self._document(), fh, indent=2)
        os.replace(tmp, self.path)
        logger.debug("Flushed MOC Studio data to %s", self.path)


def build_database(settings: Settings) -> InMemoryDatabase:
    if settings.storage_path:
        return JsonFileDatabase(
            settings.storage_path,
            audit_capacity=settings.audit_capacity,
            notification_capacity=settings.notification_capacity,
        )
    return InMemoryDatabase(
        audit_capacity=settings.audit_capacity,
        notification_capacity=settings.notification_capacity,
    )


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class InMemoryFacilityRepository(AbstractFacilityRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, facility_id):       return self._s.fetch(facility_id)
    def list_all(self):               return self._s.all()
    def save(self, facility):         self._s.put(facility)
    def delete(self, facility_id):    self._s.remove(facility_id)


class InMemoryAssetRepository(AbstractAssetRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, asset_id):          return self._s.fetch(asset_id)
    def get_by_tag(self, tag):
        return next((a for a in self._s.all() if a.tag == tag), None)
    def list_all(self):               return self._s.all()
    def save(self, asset):            self._s.put(asset)
    def delete(self, asset_id):       self._s.remove(asset_id)


class InMemoryMOCRepository(AbstractMOCRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, moc_id):            return self._s.fetch(moc_id)
    def list_all(self):               return self._s.all()
    def save(self, moc):              self._s.put(moc)


class InMemoryRiskRepository(AbstractRiskRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, risk_id):           return self._s.fetch(risk_id)
    def list_all(self):               return self._s.all()
    def save(self, risk):             self._s.put(risk)


class InMemoryWorkOrderRepository(AbstractWorkOrderRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, work_order_id):     return self._s.fetch(work_order_id)
    def list_all(self):               return self._s.all()
    def list_for_moc(self, moc_id):
        return [wo for wo in self._s.all() if wo.moc_id == moc_id]
    def save(self, work_order):       self._s.put(work_order)


class InMemoryUserRepository(AbstractUserRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, user_id):           return self._s.fetch(user_id)
    def get_by_email(self, email):
        return next((u for u in self._s.all() if u.email == email), None)
    def list_all(self):               return self._s.all()
    def save(self, user):             self._s.put(user)


class InMemoryStandardRepository(AbstractStandardRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, standard_id):       return self._s.fetch(standard_id)
    def list_all(self):               return self._s.all()
    def save(self, standard):         self._s.put(standard)
    def delete(self, standard_id):    self._s.remove(standard_id)


class InMemoryLinkRepository(AbstractLinkRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, link_id):           return self._s.fetch(link_id)
    def list_all(self):               return self._s.all()
    def save(self, link):             self._s.put(link)
    def delete(self, link_id):        self._s.remove(link_id)


class InMemoryAuditTrailRepository(AbstractAuditTrailRepository):
    def __init__(self, log: deque): self._log = log
    def append(self, entry):          self._log.appendleft(copy.deepcopy(entry))
    def list_all(self):               return copy.deepcopy(list(self._log))


class InMemoryNotificationRepository(AbstractNotificationRepository):
    def __init__(self, log: deque): self._log = log
    def add(self, notification):      self._log.appendleft(copy.deepcopy(notification))
    def list_all(self):               return copy.deepcopy(list(self._log))
    def replace_all(self, notifications):
        self._log.clear()
        self._log.extend(copy.deepcopy(notifications[: self._log.maxlen]))
    def clear(self):                  self._log.clear()


class InMemorySessionRepository(AbstractSessionRepository):
    def __init__(self, kv: Dict[str, Any]): self._kv = kv
    def get_access_token(self):       return self._kv.get(KEY_TOKEN)
    def get_refresh_token(self):      return self._kv.get(KEY_REFRESH_TOKEN)
    def get_current_user(self):       return copy.deepcopy(self._kv.get(KEY_CURRENT_USER))

    def save(self, access_token, refresh_token, user):
        self._kv[KEY_TOKEN] = access_token
        self._kv[KEY_REFRESH_TOKEN] = refresh_token
        self._kv[KEY_CURRENT_USER] = copy.deepcopy(user)

    def save_access_token(self, access_token):
        self._kv[KEY_TOKEN] = access_token

    def save_current_user(self, user):
        self._kv[KEY_CURRENT_USER] = copy.deepcopy(user)

    def clear(self):
        for key in (KEY_TOKEN, KEY_REFRESH_TOKEN, KEY_CURRENT_USER):
            self._kv.pop(key, None)


class InMemoryPreferencesRepository(AbstractPreferencesRepository):
    def __init__(self, kv: Dict[str, Any]): self._kv = kv

    def get(self):
        defaults = Preferences()
        return Preferences(
            language=self._kv.get(KEY_LANGUAGE, defaults.language),
            theme=self._kv.get(KEY_THEME, defaults.theme),
        )

    def save(self, preferences):
        self._kv[KEY_LANGUAGE] = preferences.language
        self._kv[KEY_THEME] = preferences.theme


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all repositories of one database.  Entering the block takes the
    database lock and a snapshot; commit() flushes and re-snapshots;
    rollback() restores the last committed snapshot.
    """

    def __init__(self, db: InMemoryDatabase):
        self._db = db
        self._snapshot: Optional[Dict[str, Any]] = None
        self.facilities    = InMemoryFacilityRepository(db.facilities)
        self.assets        = InMemoryAssetRepository(db.assets)
        self.mocs          = InMemoryMOCRepository(db.mocs)
        self.risks         = InMemoryRiskRepository(db.risks)
        self.work_orders   = InMemoryWorkOrderRepository(db.work_orders)
        self.users         = InMemoryUserRepository(db.users)
        self.standards     = InMemoryStandardRepository(db.standards)
        self.links         = InMemoryLinkRepository(db.links)
        self.audit_trail   = InMemoryAuditTrailRepository(db.audit_trail)
        self.notifications = InMemoryNotificationRepository(db.notifications)
        self.session       = InMemorySessionRepository(db.kv)
        self.preferences   = InMemoryPreferencesRepository(db.kv)

    def __enter__(self) -> "InMemoryUnitOfWork":
        self._db.lock.acquire()
        self._snapshot = self._db.snapshot()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._db.lock.release()

    def commit(self) -> None:
        self._db.flush()
        self._snapshot = self._db.snapshot()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._db.restore(self._snapshot)
            logger.debug("Rolled back uncommitted changes")


# ---------------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------------

class GeocodingError(Exception):
    """Raised when the geocoding endpoint fails or finds nothing."""


class HttpGeocoder(AbstractGeocoder):
    """
    Free-text location lookup against a Nominatim-compatible ``/search``
    endpoint.  Every failure raises GeocodingError; GeocodingService turns
    that into the fallback location.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    def lookup(self, query: str) -> GeoLocation:
        url = f"{self._base_url}/search"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(url, params={"q": query, "format": "json", "limit": 1})
        except httpx.TimeoutException as exc:
            raise GeocodingError(f"Geocoding timed out after {self._timeout}s") from exc
        except httpx.RequestError as exc:
            raise GeocodingError(f"Geocoding request error: {exc}") from exc

        if response.status_code != 200:
            raise GeocodingError(f"Geocoding failed with status {response.status_code}")

        results = response.json()
        if not results:
            raise GeocodingError(f"No location found for {query!r}")

        best = results[0]
        lat, lng = float(best["lat"]), float(best["lon"])
        return GeoLocation(
            lat=lat,
            lng=lng,
            address=best.get("display_name"),
            map_url=f"https://www.openstreetmap.org/?mlat={lat}&mlon={lng}#map=12/{lat}/{lng}",
            snippet=best.get("type"),
        )


def build_geocoder(settings: Settings) -> Optional[HttpGeocoder]:
    if not settings.geocoder_url:
        return None
    return HttpGeocoder(settings.geocoder_url, timeout_seconds=settings.geocoder_timeout_seconds)
