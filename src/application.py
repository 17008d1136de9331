"""
application.py

Application layer for the MOC Studio Management of Change tracking system.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Declaring abstract Repository interfaces and the UnitOfWork so that the
     use cases remain fully persistence-agnostic (implementations live in
     infrastructure.py).
  2. Resolving the acting user from an explicit AuthContext on every call.
  3. Implementing Use Case handlers — one class per user-facing operation —
     that run each operation in the same order:

         authenticate → look up → diff → authorize → mutate → cascade → audit

     Denials short-circuit before any mutation but still commit a
     SECURITY_VIOLATION audit entry.

Structure
---------
Exceptions
    ApplicationError, AuthenticationError, AuthorizationError,
    ValidationError, NotFoundError

Repository interfaces
    AbstractFacilityRepository, AbstractAssetRepository,
    AbstractMOCRepository, AbstractRiskRepository,
    AbstractWorkOrderRepository, AbstractUserRepository,
    AbstractStandardRepository, AbstractLinkRepository,
    AbstractAuditTrailRepository, AbstractNotificationRepository,
    AbstractSessionRepository, AbstractPreferencesRepository

Collaborators
    AbstractGeocoder

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Session ---
    IssueSessionUseCase, RefreshSessionUseCase, ValidateSessionUseCase,
    EndSessionUseCase, RegisterUserUseCase, RequestPasswordResetUseCase

    --- Plant ---
    ListFacilitiesUseCase, CreateFacilityUseCase, UpdateFacilityUseCase,
    DeleteFacilityUseCase, GeocodeLocationUseCase,
    ListAssetsUseCase, CreateAssetUseCase, UpdateAssetUseCase,
    DeleteAssetUseCase

    --- Change control ---
    ListMOCsUseCase, GetMOCUseCase, CreateMOCUseCase, UpdateMOCUseCase,
    ListRisksUseCase, SaveRiskUseCase

    --- Work orders ---
    ListWorkOrdersUseCase, CreateWorkOrderUseCase,
    ListWorkOrdersByMOCUseCase, ListUnlinkedWorkOrdersUseCase,
    LinkWorkOrdersUseCase

    --- Administration ---
    ListUsersUseCase, CreateUserUseCase, UpdateUserUseCase,
    ListAuditTrailUseCase

    --- Reference library ---
    ListStandardsUseCase, SaveStandardUseCase, DeleteStandardUseCase,
    ListLinksUseCase, SaveLinkUseCase, DeleteLinkUseCase

    --- Client state ---
    ListNotificationsUseCase, AddNotificationUseCase,
    MarkNotificationReadUseCase, MarkAllNotificationsReadUseCase,
    ClearNotificationsUseCase, GetPreferencesUseCase,
    UpdatePreferencesUseCase

Design notes
------------
- Every use case holds a Services container (built from Settings) and
  accepts a UnitOfWork per call.
- Records crossing the application boundary are by-value snapshots: the
  repositories hand out copies, never the stored instances.
- Errors bubble up as ApplicationError subclasses; service-level ValueErrors
  are translated into ValidationError.
"""

from __future__ import annotations

import abc
import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, List, Optional

from model import (
    Asset,
    AuditAction,
    AuditChange,
    AuditEntry,
    Facility,
    GeoLocation,
    Language,
    MOCRequest,
    Notification,
    NotificationType,
    Operation,
    Preferences,
    RegulatoryStandard,
    ResourceCategory,
    RiskAssessment,
    RoleView,
    Theme,
    UsefulLink,
    User,
    UserRole,
    WorkOrder,
    role_for_registration,
    role_view,
)
from service import (
    AuditService,
    AuthorizationService,
    GeocodingService,
    MOCService,
    MOCTransitionService,
    NotificationService,
    RiskService,
    TokenService,
    UserService,
    WorkOrderService,
    next_sequence_id,
)
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

AUTHENTICATION_RESOURCE = "AUTHENTICATION"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class AuthenticationError(ApplicationError):
    """Raised when there is no valid session, or a token is expired or malformed."""


class AuthorizationError(ApplicationError):
    """Raised when the acting user lacks the required role."""


class ValidationError(ApplicationError):
    """Raised when a write breaks a domain rule.  Nothing is mutated."""


class NotFoundError(ValidationError):
    """Raised when a requested entity does not exist."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthContext:
    """The caller's credentials, passed explicitly into every facade call."""
    access_token: Optional[str] = None


@dataclass
class SessionDTO:
    user: User
    access_token: str
    refresh_token: str
    role_view: str


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractFacilityRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, facility_id: str) -> Optional[Facility]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Facility]: ...
    @abc.abstractmethod
    def save(self, facility: Facility) -> None: ...
    @abc.abstractmethod
    def delete(self, facility_id: str) -> None: ...


class AbstractAssetRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, asset_id: str) -> Optional[Asset]: ...
    @abc.abstractmethod
    def get_by_tag(self, tag: str) -> Optional[Asset]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Asset]: ...
    @abc.abstractmethod
    def save(self, asset: Asset) -> None: ...
    @abc.abstractmethod
    def delete(self, asset_id: str) -> None: ...


class AbstractMOCRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, moc_id: str) -> Optional[MOCRequest]: ...
    @abc.abstractmethod
    def list_all(self) -> List[MOCRequest]: ...
    @abc.abstractmethod
    def save(self, moc: MOCRequest) -> None: ...


class AbstractRiskRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, risk_id: str) -> Optional[RiskAssessment]: ...
    @abc.abstractmethod
    def list_all(self) -> List[RiskAssessment]: ...
    @abc.abstractmethod
    def save(self, risk: RiskAssessment) -> None: ...


class AbstractWorkOrderRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, work_order_id: str) -> Optional[WorkOrder]: ...
    @abc.abstractmethod
    def list_all(self) -> List[WorkOrder]: ...
    @abc.abstractmethod
    def list_for_moc(self, moc_id: str) -> List[WorkOrder]: ...
    @abc.abstractmethod
    def save(self, work_order: WorkOrder) -> None: ...


class AbstractUserRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, user_id: str) -> Optional[User]: ...
    @abc.abstractmethod
    def get_by_email(self, email: str) -> Optional[User]: ...
    @abc.abstractmethod
    def list_all(self) -> List[User]: ...
    @abc.abstractmethod
    def save(self, user: User) -> None: ...


class AbstractStandardRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, standard_id: str) -> Optional[RegulatoryStandard]: ...
    @abc.abstractmethod
    def list_all(self) -> List[RegulatoryStandard]: ...
    @abc.abstractmethod
    def save(self, standard: RegulatoryStandard) -> None: ...
    @abc.abstractmethod
    def delete(self, standard_id: str) -> None: ...


class AbstractLinkRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, link_id: str) -> Optional[UsefulLink]: ...
    @abc.abstractmethod
    def list_all(self) -> List[UsefulLink]: ...
    @abc.abstractmethod
    def save(self, link: UsefulLink) -> None: ...
    @abc.abstractmethod
    def delete(self, link_id: str) -> None: ...


class AbstractAuditTrailRepository(abc.ABC):
    """Capped, newest-first, append-only log."""
    @abc.abstractmethod
    def append(self, entry: AuditEntry) -> None: ...
    @abc.abstractmethod
    def list_all(self) -> List[AuditEntry]: ...


class AbstractNotificationRepository(abc.ABC):
    """Capped, newest-first list of client notifications."""
    @abc.abstractmethod
    def add(self, notification: Notification) -> None: ...
    @abc.abstractmethod
    def list_all(self) -> List[Notification]: ...
    @abc.abstractmethod
    def replace_all(self, notifications: List[Notification]) -> None: ...
    @abc.abstractmethod
    def clear(self) -> None: ...


class AbstractSessionRepository(abc.ABC):
    """The stored client session: access token, refresh token, user snapshot."""
    @abc.abstractmethod
    def get_access_token(self) -> Optional[str]: ...
    @abc.abstractmethod
    def get_refresh_token(self) -> Optional[str]: ...
    @abc.abstractmethod
    def get_current_user(self) -> Optional[User]: ...
    @abc.abstractmethod
    def save(self, access_token: str, refresh_token: str, user: User) -> None: ...
    @abc.abstractmethod
    def save_access_token(self, access_token: str) -> None: ...
    @abc.abstractmethod
    def save_current_user(self, user: User) -> None: ...
    @abc.abstractmethod
    def clear(self) -> None: ...


class AbstractPreferencesRepository(abc.ABC):
    @abc.abstractmethod
    def get(self) -> Preferences: ...
    @abc.abstractmethod
    def save(self, preferences: Preferences) -> None: ...


class AbstractGeocoder(abc.ABC):
    """External location lookup.  Implementations may raise on any failure."""
    @abc.abstractmethod
    def lookup(self, query: str) -> GeoLocation: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.mocs.save(moc)
            uow.commit()

    Leaving the block with an exception rolls back everything since the last
    commit.
    """
    facilities: AbstractFacilityRepository
    assets: AbstractAssetRepository
    mocs: AbstractMOCRepository
    risks: AbstractRiskRepository
    work_orders: AbstractWorkOrderRepository
    users: AbstractUserRepository
    standards: AbstractStandardRepository
    links: AbstractLinkRepository
    audit_trail: AbstractAuditTrailRepository
    notifications: AbstractNotificationRepository
    session: AbstractSessionRepository
    preferences: AbstractPreferencesRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICES
# ===========================================================================

@dataclass
class Services:
    """Domain services shared by all use cases, built from Settings."""
    authorization: AuthorizationService
    tokens: TokenService
    audit: AuditService
    transitions: MOCTransitionService
    mocs: MOCService
    work_orders: WorkOrderService
    risks: RiskService
    users: UserService
    notifications: NotificationService
    geocoding: GeocodingService
    revalidate_sessions: bool = False

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
        geocoder: Optional[AbstractGeocoder] = None,
    ) -> "Services":
        return cls(
            authorization=AuthorizationService(),
            tokens=TokenService(
                secret=settings.token_secret,
                algorithm=settings.token_algorithm,
                access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
                refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
                clock=clock,
            ),
            audit=AuditService(clock=clock),
            transitions=MOCTransitionService(due_days=settings.work_order_due_days, clock=clock),
            mocs=MOCService(clock=clock),
            work_orders=WorkOrderService(clock=clock),
            risks=RiskService(clock=clock),
            users=UserService(),
            notifications=NotificationService(clock=clock),
            geocoding=GeocodingService(geocoder),
            revalidate_sessions=settings.revalidate_sessions,
        )


@lru_cache
def default_services() -> Services:
    return Services.build(get_settings())


# ===========================================================================
# USE CASE BASE
# ===========================================================================

class _UseCase:
    """Shared authenticate / authorize / audit steps of every facade call."""

    def __init__(self, services: Optional[Services] = None) -> None:
        self._svc = services or default_services()

    # --- Session helpers ----------------------------------------------------

    def _teardown_session(
        self,
        uow: AbstractUnitOfWork,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> bool:
        """
        Clear the stored session and audit a LOGOUT for its user, but only
        when the presented credential is the stored one.  A stranger's bad
        token never ends somebody else's session.
        """
        stored_access = uow.session.get_access_token()
        stored_refresh = uow.session.get_refresh_token()
        owns_access = access_token is not None and access_token == stored_access
        owns_refresh = refresh_token is not None and refresh_token == stored_refresh
        if not (owns_access or owns_refresh):
            return False
        current = uow.session.get_current_user()
        if current is not None:
            uow.audit_trail.append(
                self._svc.audit.build_entry(current, AuditAction.LOGOUT, AUTHENTICATION_RESOURCE, "Logout")
            )
        uow.session.clear()
        return True

    def _resolve_user(self, uow: AbstractUnitOfWork, access_token: Optional[str]) -> Optional[User]:
        user = self._svc.tokens.validate(access_token)
        if user is not None and self._svc.revalidate_sessions:
            live = uow.users.get(user.id)
            user = live if live is not None and live.active else None
        return user

    def _authenticate(self, uow: AbstractUnitOfWork, ctx: AuthContext) -> User:
        user = self._resolve_user(uow, ctx.access_token)
        if user is None:
            self._teardown_session(uow, access_token=ctx.access_token)
            uow.commit()
            raise AuthenticationError("Session expired or not authenticated.")
        return user

    # --- Authorization ------------------------------------------------------

    def _authorize(
        self,
        uow: AbstractUnitOfWork,
        user: User,
        resource: ResourceCategory,
        operation: Operation,
    ) -> None:
        if self._svc.authorization.authorize(resource, operation, user):
            return
        details = AuthorizationService.denial_details(user, resource, operation)
        logger.warning(details)
        uow.audit_trail.append(
            self._svc.audit.build_entry(user, AuditAction.SECURITY_VIOLATION, resource.value, details)
        )
        uow.commit()
        raise AuthorizationError(
            f"Access denied. Role {user.role.value} may not {operation.value} {resource.value}."
        )

    def _secure(
        self,
        uow: AbstractUnitOfWork,
        ctx: AuthContext,
        resource: ResourceCategory,
        operation: Operation,
    ) -> User:
        user = self._authenticate(uow, ctx)
        self._authorize(uow, user, resource, operation)
        return user

    # --- Audit --------------------------------------------------------------

    def _record_write(
        self,
        uow: AbstractUnitOfWork,
        user: User,
        resource: ResourceCategory,
        details: str,
        changes: Optional[List[AuditChange]] = None,
    ) -> None:
        uow.audit_trail.append(
            self._svc.audit.build_entry(user, AuditAction.WRITE, resource.value, details, changes)
        )


def _session_dto(user: User, access_token: str, refresh_token: str) -> SessionDTO:
    return SessionDTO(
        user=user,
        access_token=access_token,
        refresh_token=refresh_token,
        role_view=role_view(user.role).value,
    )


# ===========================================================================
# USE CASES — SESSION
# ===========================================================================

class IssueSessionUseCase(_UseCase):
    """Sign in by email.  Only active users with an exact email match qualify."""

    def execute(self, email: str, uow: AbstractUnitOfWork) -> SessionDTO:
        with uow:
            user = uow.users.get_by_email(email)
            if user is None or not user.active:
                logger.warning("Rejected sign-in for %s", email)
                raise AuthenticationError("Invalid credentials.")

            access_token = self._svc.tokens.mint_access_token(user)
            refresh_token = self._svc.tokens.mint_refresh_token(user)
            uow.session.save(access_token, refresh_token, user)
            uow.audit_trail.append(
                self._svc.audit.build_entry(
                    user, AuditAction.LOGIN, AUTHENTICATION_RESOURCE, f"Successful login: {email}"
                )
            )
            uow.commit()
            logger.info("Session issued for %s (%s)", user.id, user.role.value)
            return _session_dto(user, access_token, refresh_token)


class RefreshSessionUseCase(_UseCase):
    """Mint a new access token from a refresh token.  The refresh token is not rotated."""

    def execute(self, refresh_token: str, uow: AbstractUnitOfWork) -> SessionDTO:
        with uow:
            user_id = self._svc.tokens.refresh_subject(refresh_token)
            user = uow.users.get(user_id) if user_id else None
            if user is None or not user.active:
                self._teardown_session(uow, refresh_token=refresh_token)
                uow.commit()
                raise AuthenticationError("Session refresh failed.")

            access_token = self._svc.tokens.mint_access_token(user)
            uow.session.save_access_token(access_token)
            uow.commit()
            logger.info("Access token refreshed for %s", user.id)
            return _session_dto(user, access_token, refresh_token)


class ValidateSessionUseCase(_UseCase):
    """Return the user behind an access token, or None.  Never raises."""

    def execute(self, access_token: Optional[str], uow: AbstractUnitOfWork) -> Optional[User]:
        with uow:
            return self._resolve_user(uow, access_token)


class EndSessionUseCase(_UseCase):
    """
    Sign the caller out.  The stored session is cleared only when it is the
    caller's own; any other valid token just records its LOGOUT.
    """

    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = self._authenticate(uow, ctx)
            if not self._teardown_session(uow, access_token=ctx.access_token):
                uow.audit_trail.append(
                    self._svc.audit.build_entry(user, AuditAction.LOGOUT, AUTHENTICATION_RESOURCE, "Logout")
                )
            uow.commit()
            logger.info("Session ended for %s", user.id)


@dataclass
class RegisterUserCommand:
    name: str
    email: str
    role: RoleView


class RegisterUserUseCase(_UseCase):
    """
    Self-registration.  The simplified role chosen at sign-up is mapped to an
    operational role, then a session is issued for the new user.
    """

    def execute(self, cmd: RegisterUserCommand, uow: AbstractUnitOfWork) -> SessionDTO:
        with uow:
            if uow.users.get_by_email(cmd.email) is not None:
                raise ValidationError(f"A user with email '{cmd.email}' already exists.")
            try:
                user = self._svc.users.create_user(cmd.name, cmd.email, role_for_registration(cmd.role))
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            uow.users.save(user)
            self._record_write(
                uow,
                user,
                ResourceCategory.ADMIN_USERS,
                f"Self-registration: {user.email} ({user.role.value})",
            )
            uow.commit()
        return IssueSessionUseCase(self._svc).execute(cmd.email, uow)


class RequestPasswordResetUseCase(_UseCase):
    """Check that the email is registered.  No message is dispatched."""

    def execute(self, email: str, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = uow.users.get_by_email(email)
            if user is None:
                raise NotFoundError("Email is not registered.")
            uow.audit_trail.append(
                self._svc.audit.build_entry(
                    user,
                    AuditAction.PASSWORD_RESET_REQUEST,
                    AUTHENTICATION_RESOURCE,
                    f"Password reset requested for {email}",
                )
            )
            uow.commit()


# ===========================================================================
# USE CASES — FACILITIES
# ===========================================================================

class ListFacilitiesUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[Facility]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.FACILITIES, Operation.READ)
            return uow.facilities.list_all()


@dataclass
class CreateFacilityCommand:
    ctx: AuthContext
    facility: Facility
    location_query: Optional[str] = None


class CreateFacilityUseCase(_UseCase):
    """
    Create a facility.  When a free-text `location_query` is given, the
    coordinates and location dossier come from the geocoding collaborator
    (which falls back to a default location instead of failing).
    """

    def execute(self, cmd: CreateFacilityCommand, uow: AbstractUnitOfWork) -> Facility:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.FACILITIES, Operation.WRITE)
            facility = copy.deepcopy(cmd.facility)
            if not facility.name.strip():
                raise ValidationError("A facility must have a name.")
            if not facility.id:
                facility.id = next_sequence_id("FAC", [f.id for f in uow.facilities.list_all()])
            if uow.facilities.get(facility.id) is not None:
                raise ValidationError(f"Facility {facility.id} already exists.")
            if cmd.location_query:
                location = self._svc.geocoding.locate(cmd.location_query)
                facility.coordinates = (location.lat, location.lng)
                facility.address = location.address
                facility.map_url = location.map_url
                facility.snippet = location.snippet

            uow.facilities.save(facility)
            self._record_write(uow, user, ResourceCategory.FACILITIES, f"Facility created: {facility.name}")
            uow.commit()
            return facility


@dataclass
class UpdateFacilityCommand:
    ctx: AuthContext
    facility: Facility


class UpdateFacilityUseCase(_UseCase):
    def execute(self, cmd: UpdateFacilityCommand, uow: AbstractUnitOfWork) -> Facility:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            old = uow.facilities.get(cmd.facility.id)
            if old is None:
                raise NotFoundError(f"Facility {cmd.facility.id} not found.")
            changes = self._svc.audit.diff(old, cmd.facility)
            self._authorize(uow, user, ResourceCategory.FACILITIES, Operation.WRITE)

            uow.facilities.save(cmd.facility)
            self._record_write(
                uow, user, ResourceCategory.FACILITIES, f"Facility edited: {cmd.facility.name}", changes
            )
            uow.commit()
            return uow.facilities.get(cmd.facility.id)


@dataclass
class DeleteFacilityCommand:
    ctx: AuthContext
    facility_id: str


class DeleteFacilityUseCase(_UseCase):
    def execute(self, cmd: DeleteFacilityCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            facility = uow.facilities.get(cmd.facility_id)
            if facility is None:
                raise NotFoundError(f"Facility {cmd.facility_id} not found.")
            self._authorize(uow, user, ResourceCategory.FACILITIES, Operation.WRITE)

            uow.facilities.delete(cmd.facility_id)
            self._record_write(
                uow,
                user,
                ResourceCategory.FACILITIES,
                f"Facility removed: {facility.name} (ID: {facility.id})",
            )
            uow.commit()


class GeocodeLocationUseCase(_UseCase):
    """Resolve a free-text location for the facility forms.  Never fails on lookup errors."""

    def execute(self, ctx: AuthContext, query: str, uow: AbstractUnitOfWork) -> GeoLocation:
        with uow:
            self._authenticate(uow, ctx)
        return self._svc.geocoding.locate(query)


# ===========================================================================
# USE CASES — ASSETS
# ===========================================================================

class ListAssetsUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[Asset]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.ASSETS, Operation.READ)
            return uow.assets.list_all()


@dataclass
class CreateAssetCommand:
    ctx: AuthContext
    asset: Asset


class CreateAssetUseCase(_UseCase):
    def execute(self, cmd: CreateAssetCommand, uow: AbstractUnitOfWork) -> Asset:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.ASSETS, Operation.WRITE)
            asset = copy.deepcopy(cmd.asset)
            if not asset.tag.strip():
                raise ValidationError("An asset must have a tag.")
            if uow.assets.get_by_tag(asset.tag) is not None:
                raise ValidationError(f"An asset tagged '{asset.tag}' already exists.")
            if not asset.id:
                asset.id = f"AST-{asset.tag}"
            if uow.assets.get(asset.id) is not None:
                raise ValidationError(f"Asset {asset.id} already exists.")

            uow.assets.save(asset)
            self._record_write(
                uow, user, ResourceCategory.ASSETS, f"Asset created: {asset.name} (TAG: {asset.tag})"
            )
            uow.commit()
            return asset


@dataclass
class UpdateAssetCommand:
    ctx: AuthContext
    asset: Asset


class UpdateAssetUseCase(_UseCase):
    def execute(self, cmd: UpdateAssetCommand, uow: AbstractUnitOfWork) -> Asset:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            old = uow.assets.get(cmd.asset.id)
            if old is None:
                raise NotFoundError(f"Asset {cmd.asset.id} not found.")
            clash = uow.assets.get_by_tag(cmd.asset.tag)
            if clash is not None and clash.id != cmd.asset.id:
                raise ValidationError(f"An asset tagged '{cmd.asset.tag}' already exists.")
            changes = self._svc.audit.diff(old, cmd.asset)
            self._authorize(uow, user, ResourceCategory.ASSETS, Operation.WRITE)

            uow.assets.save(cmd.asset)
            self._record_write(
                uow,
                user,
                ResourceCategory.ASSETS,
                f"Asset edited: {cmd.asset.name} (TAG: {cmd.asset.tag})",
                changes,
            )
            uow.commit()
            return uow.assets.get(cmd.asset.id)


@dataclass
class DeleteAssetCommand:
    ctx: AuthContext
    tag: str


class DeleteAssetUseCase(_UseCase):
    """Assets are deleted by tag."""

    def execute(self, cmd: DeleteAssetCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            asset = uow.assets.get_by_tag(cmd.tag)
            if asset is None:
                raise NotFoundError(f"Asset tagged '{cmd.tag}' not found.")
            self._authorize(uow, user, ResourceCategory.ASSETS, Operation.WRITE)

            uow.assets.delete(asset.id)
            self._record_write(
                uow, user, ResourceCategory.ASSETS, f"Asset removed: {asset.name} (TAG: {asset.tag})"
            )
            uow.commit()


# ===========================================================================
# USE CASES — MOC REQUESTS
# ===========================================================================

class ListMOCsUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[MOCRequest]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.MOCS, Operation.READ)
            return uow.mocs.list_all()


class GetMOCUseCase(_UseCase):
    """Return the MOC or None when the id is unknown."""

    def execute(self, ctx: AuthContext, moc_id: str, uow: AbstractUnitOfWork) -> Optional[MOCRequest]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.MOCS, Operation.READ)
            return uow.mocs.get(moc_id)


@dataclass
class CreateMOCCommand:
    ctx: AuthContext
    moc: MOCRequest


class CreateMOCUseCase(_UseCase):
    def execute(self, cmd: CreateMOCCommand, uow: AbstractUnitOfWork) -> MOCRequest:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.MOCS, Operation.WRITE)
            existing_ids = [m.id for m in uow.mocs.list_all()]
            try:
                moc = self._svc.mocs.prepare_new(cmd.moc, existing_ids)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc

            uow.mocs.save(moc)
            self._record_write(uow, user, ResourceCategory.MOCS, f"Creating MOC: {moc.title}")
            uow.commit()
            return moc


@dataclass
class UpdateMOCCommand:
    ctx: AuthContext
    moc: MOCRequest


class UpdateMOCUseCase(_UseCase):
    """
    Save a new version of an MOC through the transition engine.

    A rejection without justification fails with ValidationError and leaves
    the stored record untouched.  A fresh approval additionally stores an
    auto-generated work order and prepends a system history entry naming it.
    """

    def execute(self, cmd: UpdateMOCCommand, uow: AbstractUnitOfWork) -> MOCRequest:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            existing = uow.mocs.get(cmd.moc.id)
            if existing is None:
                raise NotFoundError(f"MOC {cmd.moc.id} not found.")
            changes = self._svc.audit.diff(existing, cmd.moc)
            self._authorize(uow, user, ResourceCategory.MOCS, Operation.WRITE)

            try:
                result = self._svc.transitions.apply_update(
                    existing, cmd.moc, [wo.id for wo in uow.work_orders.list_all()]
                )
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc

            moc = result.moc
            uow.mocs.save(moc)

            if result.work_order is not None:
                uow.work_orders.save(result.work_order)
                moc.history.insert(0, result.history_entry)
                uow.mocs.save(moc)
                uow.audit_trail.append(
                    self._svc.audit.build_system_entry(
                        AuditAction.AUTOMATION,
                        ResourceCategory.WORK_ORDERS.value,
                        f"Work order {result.work_order.id} generated for MOC {moc.id}",
                    )
                )
                logger.info("Approval of %s generated work order %s", moc.id, result.work_order.id)

            self._record_write(
                uow, user, ResourceCategory.MOCS, f"Updating MOC {moc.id} to {moc.status.value}", changes
            )
            uow.commit()
            return uow.mocs.get(moc.id)


# ===========================================================================
# USE CASES — RISKS
# ===========================================================================

class ListRisksUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[RiskAssessment]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.RISKS, Operation.READ)
            return uow.risks.list_all()


@dataclass
class SaveRiskCommand:
    ctx: AuthContext
    risk: RiskAssessment


class SaveRiskUseCase(_UseCase):
    """Create or update a risk assessment; the score is always recomputed."""

    def execute(self, cmd: SaveRiskCommand, uow: AbstractUnitOfWork) -> RiskAssessment:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.RISKS, Operation.WRITE)
            try:
                risk = self._svc.risks.assess(cmd.risk, [r.id for r in uow.risks.list_all()])
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            old = uow.risks.get(risk.id)
            changes = self._svc.audit.diff(old, risk) if old is not None else None

            uow.risks.save(risk)
            self._record_write(
                uow,
                user,
                ResourceCategory.RISKS,
                f"Risk assessment {risk.id} saved (score {risk.score})",
                changes,
            )
            uow.commit()
            return risk


# ===========================================================================
# USE CASES — WORK ORDERS
# ===========================================================================

class ListWorkOrdersUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[WorkOrder]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.WORK_ORDERS, Operation.READ)
            return uow.work_orders.list_all()


@dataclass
class CreateWorkOrderCommand:
    ctx: AuthContext
    work_order: WorkOrder


class CreateWorkOrderUseCase(_UseCase):
    def execute(self, cmd: CreateWorkOrderCommand, uow: AbstractUnitOfWork) -> WorkOrder:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.WORK_ORDERS, Operation.WRITE)
            existing_ids = [wo.id for wo in uow.work_orders.list_all()]
            try:
                work_order = self._svc.work_orders.prepare_new(cmd.work_order, existing_ids)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc

            uow.work_orders.save(work_order)
            self._record_write(
                uow,
                user,
                ResourceCategory.WORK_ORDERS,
                f"Work order created, linked to MOC {work_order.moc_id or '-'}",
            )
            uow.commit()
            return work_order


class ListWorkOrdersByMOCUseCase(_UseCase):
    def execute(self, ctx: AuthContext, moc_id: str, uow: AbstractUnitOfWork) -> List[WorkOrder]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.WORK_ORDERS, Operation.READ)
            return uow.work_orders.list_for_moc(moc_id)


class ListUnlinkedWorkOrdersUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[WorkOrder]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.WORK_ORDERS, Operation.READ)
            return [wo for wo in uow.work_orders.list_all() if WorkOrderService.is_unlinked(wo)]


@dataclass
class LinkWorkOrdersCommand:
    ctx: AuthContext
    work_order_ids: List[str]
    moc_id: str


class LinkWorkOrdersUseCase(_UseCase):
    """Attach existing work orders to one MOC.  Unknown work order ids are ignored."""

    def execute(self, cmd: LinkWorkOrdersCommand, uow: AbstractUnitOfWork) -> List[WorkOrder]:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            if uow.mocs.get(cmd.moc_id) is None:
                raise NotFoundError(f"MOC {cmd.moc_id} not found.")
            self._authorize(uow, user, ResourceCategory.WORK_ORDERS, Operation.WRITE)

            linked = WorkOrderService.link(uow.work_orders.list_all(), cmd.work_order_ids, cmd.moc_id)
            for wo in linked:
                uow.work_orders.save(wo)
            self._record_write(
                uow,
                user,
                ResourceCategory.WORK_ORDERS,
                f"Linked {len(cmd.work_order_ids)} operational work orders to MOC {cmd.moc_id}",
            )
            uow.commit()
            return linked


# ===========================================================================
# USE CASES — ADMINISTRATION
# ===========================================================================

class ListUsersUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[User]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.ADMIN_USERS, Operation.READ)
            return uow.users.list_all()


@dataclass
class CreateUserCommand:
    ctx: AuthContext
    name: str
    email: str
    role: UserRole
    user_id: str = ""


class CreateUserUseCase(_UseCase):
    def execute(self, cmd: CreateUserCommand, uow: AbstractUnitOfWork) -> User:
        with uow:
            actor = self._secure(uow, cmd.ctx, ResourceCategory.ADMIN_USERS, Operation.WRITE)
            if uow.users.get_by_email(cmd.email) is not None:
                raise ValidationError(f"A user with email '{cmd.email}' already exists.")
            if cmd.user_id and uow.users.get(cmd.user_id) is not None:
                raise ValidationError(f"User {cmd.user_id} already exists.")
            try:
                user = self._svc.users.create_user(cmd.name, cmd.email, cmd.role, cmd.user_id)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc

            uow.users.save(user)
            self._record_write(
                uow,
                actor,
                ResourceCategory.ADMIN_USERS,
                f"New user created: {user.email} ({user.role.value})",
            )
            uow.commit()
            return user


@dataclass
class UpdateUserCommand:
    ctx: AuthContext
    user: User


class UpdateUserUseCase(_UseCase):
    """
    Edit a user's profile, role or active flag.  Users are never deleted.

    Tokens already issued keep their embedded snapshot until refreshed or
    expired, unless sessions are configured for live re-validation.
    """

    def execute(self, cmd: UpdateUserCommand, uow: AbstractUnitOfWork) -> User:
        with uow:
            actor = self._authenticate(uow, cmd.ctx)
            old = uow.users.get(cmd.user.id)
            if old is None:
                raise NotFoundError(f"User {cmd.user.id} not found.")
            clash = uow.users.get_by_email(cmd.user.email)
            if clash is not None and clash.id != cmd.user.id:
                raise ValidationError(f"A user with email '{cmd.user.email}' already exists.")
            changes = self._svc.audit.diff(old, cmd.user)
            self._authorize(uow, actor, ResourceCategory.ADMIN_USERS, Operation.WRITE)

            uow.users.save(cmd.user)
            current = uow.session.get_current_user()
            if current is not None and current.id == cmd.user.id:
                uow.session.save_current_user(cmd.user)
            self._record_write(
                uow, actor, ResourceCategory.ADMIN_USERS, f"User edited: {cmd.user.email}", changes
            )
            uow.commit()
            return uow.users.get(cmd.user.id)


class ListAuditTrailUseCase(_UseCase):
    """Newest entries first."""

    def execute(
        self, ctx: AuthContext, uow: AbstractUnitOfWork, limit: Optional[int] = None
    ) -> List[AuditEntry]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.AUDIT_TRAIL, Operation.READ)
            entries = uow.audit_trail.list_all()
            return entries[:limit] if limit is not None else entries


# ===========================================================================
# USE CASES — REFERENCE LIBRARY
# ===========================================================================

class ListStandardsUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[RegulatoryStandard]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.REFERENCE_LIBRARY, Operation.READ)
            return uow.standards.list_all()


@dataclass
class SaveStandardCommand:
    ctx: AuthContext
    standard: RegulatoryStandard


class SaveStandardUseCase(_UseCase):
    def execute(self, cmd: SaveStandardCommand, uow: AbstractUnitOfWork) -> RegulatoryStandard:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.REFERENCE_LIBRARY, Operation.WRITE)
            standard = copy.deepcopy(cmd.standard)
            if not standard.code.strip():
                raise ValidationError("A regulatory standard must have a code.")
            if not standard.id:
                standard.id = f"STD-{standard.code}"
            old = uow.standards.get(standard.id)
            changes = self._svc.audit.diff(old, standard) if old is not None else None

            uow.standards.save(standard)
            self._record_write(
                uow, user, ResourceCategory.REFERENCE_LIBRARY, f"Standard saved: {standard.code}", changes
            )
            uow.commit()
            return standard


@dataclass
class DeleteStandardCommand:
    ctx: AuthContext
    standard_id: str


class DeleteStandardUseCase(_UseCase):
    def execute(self, cmd: DeleteStandardCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            standard = uow.standards.get(cmd.standard_id)
            if standard is None:
                raise NotFoundError(f"Standard {cmd.standard_id} not found.")
            self._authorize(uow, user, ResourceCategory.REFERENCE_LIBRARY, Operation.WRITE)

            uow.standards.delete(cmd.standard_id)
            self._record_write(uow, user, ResourceCategory.REFERENCE_LIBRARY, f"Standard removed: {standard.code}")
            uow.commit()


class ListLinksUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[UsefulLink]:
        with uow:
            self._secure(uow, ctx, ResourceCategory.REFERENCE_LIBRARY, Operation.READ)
            return uow.links.list_all()


@dataclass
class SaveLinkCommand:
    ctx: AuthContext
    link: UsefulLink


class SaveLinkUseCase(_UseCase):
    def execute(self, cmd: SaveLinkCommand, uow: AbstractUnitOfWork) -> UsefulLink:
        with uow:
            user = self._secure(uow, cmd.ctx, ResourceCategory.REFERENCE_LIBRARY, Operation.WRITE)
            link = copy.deepcopy(cmd.link)
            if not link.url.strip():
                raise ValidationError("A link must have a URL.")
            if not link.id:
                link.id = next_sequence_id("LNK", [lnk.id for lnk in uow.links.list_all()])
            old = uow.links.get(link.id)
            changes = self._svc.audit.diff(old, link) if old is not None else None

            uow.links.save(link)
            self._record_write(uow, user, ResourceCategory.REFERENCE_LIBRARY, f"Link saved: {link.label}", changes)
            uow.commit()
            return link


@dataclass
class DeleteLinkCommand:
    ctx: AuthContext
    link_id: str


class DeleteLinkUseCase(_UseCase):
    def execute(self, cmd: DeleteLinkCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = self._authenticate(uow, cmd.ctx)
            link = uow.links.get(cmd.link_id)
            if link is None:
                raise NotFoundError(f"Link {cmd.link_id} not found.")
            self._authorize(uow, user, ResourceCategory.REFERENCE_LIBRARY, Operation.WRITE)

            uow.links.delete(cmd.link_id)
            self._record_write(uow, user, ResourceCategory.REFERENCE_LIBRARY, f"Link removed: {link.label}")
            uow.commit()


# ===========================================================================
# USE CASES — CLIENT STATE (notifications, preferences)
# ===========================================================================

class ListNotificationsUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[Notification]:
        with uow:
            self._authenticate(uow, ctx)
            return uow.notifications.list_all()


@dataclass
class AddNotificationCommand:
    ctx: AuthContext
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    link: Optional[str] = None


class AddNotificationUseCase(_UseCase):
    def execute(self, cmd: AddNotificationCommand, uow: AbstractUnitOfWork) -> Notification:
        with uow:
            self._authenticate(uow, cmd.ctx)
            notification = self._svc.notifications.build(cmd.title, cmd.message, cmd.type, cmd.link)
            uow.notifications.add(notification)
            uow.commit()
            return notification


class MarkNotificationReadUseCase(_UseCase):
    def execute(self, ctx: AuthContext, notification_id: str, uow: AbstractUnitOfWork) -> Notification:
        with uow:
            self._authenticate(uow, ctx)
            notifications = uow.notifications.list_all()
            match = next((n for n in notifications if n.id == notification_id), None)
            if match is None:
                raise NotFoundError(f"Notification {notification_id} not found.")
            match.read = True
            uow.notifications.replace_all(notifications)
            uow.commit()
            return match


class MarkAllNotificationsReadUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> List[Notification]:
        with uow:
            self._authenticate(uow, ctx)
            notifications = uow.notifications.list_all()
            for n in notifications:
                n.read = True
            uow.notifications.replace_all(notifications)
            uow.commit()
            return notifications


class ClearNotificationsUseCase(_UseCase):
    def execute(self, ctx: AuthContext, uow: AbstractUnitOfWork) -> None:
        with uow:
            self._authenticate(uow, ctx)
            uow.notifications.clear()
            uow.commit()


class GetPreferencesUseCase(_UseCase):
    def execute(self, uow: AbstractUnitOfWork) -> Preferences:
        with uow:
            return uow.preferences.get()


@dataclass
class UpdatePreferencesCommand:
    language: Optional[Language] = None
    theme: Optional[Theme] = None


class UpdatePreferencesUseCase(_UseCase):
    def execute(self, cmd: UpdatePreferencesCommand, uow: AbstractUnitOfWork) -> Preferences:
        with uow:
            preferences = uow.preferences.get()
            if cmd.language is not None:
                preferences.language = cmd.language
            if cmd.theme is not None:
                preferences.theme = cmd.theme
            uow.preferences.save(preferences)
            uow.commit()
            return preferences
