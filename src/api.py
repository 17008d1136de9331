"""
api.py

REST API layer for the MOC Studio Management of Change tracking system.

Framework : FastAPI
Auth      : Bearer access token (see /api/v1/session/login).  The raw token is
            wrapped in an AuthContext and handed to every use case, which
            authenticates it, checks the role table and audits the call.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /session          — login, refresh, logout, register, password reset
  ├── /facilities       — installations
  ├── /assets           — tagged equipment
  ├── /mocs             — change requests and their approval workflow
  ├── /risks            — risk assessments
  ├── /work-orders      — manual, auto-generated and linked work orders
  ├── /users            — user administration
  ├── /audit            — audit trail (newest first)
  ├── /standards        — regulatory standards library
  ├── /links            — useful links library
  ├── /notifications    — client notification list
  ├── /preferences      — language and theme
  └── /geocode          — facility location lookup

Error handling
--------------
  AuthenticationError → 401
  AuthorizationError  → 403
  NotFoundError       → 404
  ApplicationError    → 422
  ValueError          → 422
  Unhandled           → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, EmailStr, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    # Context / wiring
    AbstractUnitOfWork,
    AuthContext,
    Services,
    # Commands
    AddNotificationCommand,
    CreateAssetCommand,
    CreateFacilityCommand,
    CreateMOCCommand,
    CreateUserCommand,
    CreateWorkOrderCommand,
    DeleteAssetCommand,
    DeleteFacilityCommand,
    DeleteLinkCommand,
    DeleteStandardCommand,
    LinkWorkOrdersCommand,
    RegisterUserCommand,
    SaveLinkCommand,
    SaveRiskCommand,
    SaveStandardCommand,
    UpdateAssetCommand,
    UpdateFacilityCommand,
    UpdateMOCCommand,
    UpdatePreferencesCommand,
    UpdateUserCommand,
    # Use cases
    AddNotificationUseCase,
    ClearNotificationsUseCase,
    CreateAssetUseCase,
    CreateFacilityUseCase,
    CreateMOCUseCase,
    CreateUserUseCase,
    CreateWorkOrderUseCase,
    DeleteAssetUseCase,
    DeleteFacilityUseCase,
    DeleteLinkUseCase,
    DeleteStandardUseCase,
    EndSessionUseCase,
    GeocodeLocationUseCase,
    GetMOCUseCase,
    GetPreferencesUseCase,
    IssueSessionUseCase,
    LinkWorkOrdersUseCase,
    ListAssetsUseCase,
    ListAuditTrailUseCase,
    ListFacilitiesUseCase,
    ListLinksUseCase,
    ListMOCsUseCase,
    ListNotificationsUseCase,
    ListRisksUseCase,
    ListStandardsUseCase,
    ListUnlinkedWorkOrdersUseCase,
    ListUsersUseCase,
    ListWorkOrdersByMOCUseCase,
    ListWorkOrdersUseCase,
    MarkAllNotificationsReadUseCase,
    MarkNotificationReadUseCase,
    RefreshSessionUseCase,
    RegisterUserUseCase,
    RequestPasswordResetUseCase,
    SaveLinkUseCase,
    SaveRiskUseCase,
    SaveStandardUseCase,
    UpdateAssetUseCase,
    UpdateFacilityUseCase,
    UpdateMOCUseCase,
    UpdatePreferencesUseCase,
    UpdateUserUseCase,
    ValidateSessionUseCase,
)
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork, build_database, build_geocoder
from model import (
    Asset,
    Facility,
    Language,
    MOCRequest,
    NotificationType,
    RegulatoryStandard,
    RiskAssessment,
    RoleView,
    Theme,
    UsefulLink,
    User,
    UserRole,
    WorkOrder,
)
from settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MOC Studio — Management of Change API",
    version="1.0.0",
    description=(
        "REST API for offshore and onshore Management of Change: facilities, "
        "assets, change requests with approval workflow, risk assessments, "
        "work orders, user administration, audit trail and reference library."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(AuthenticationError)
async def authentication_handler(request, exc: AuthenticationError):
    return JSONResponse(
        status_code=401,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(AuthorizationError)
async def authorization_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache
def get_database() -> InMemoryDatabase:
    return build_database(settings)


def get_uow() -> AbstractUnitOfWork:
    """A fresh Unit of Work over the process-wide database."""
    return InMemoryUnitOfWork(get_database())


@lru_cache
def get_services() -> Services:
    return Services.build(settings, geocoder=build_geocoder(settings))


_bearer = HTTPBearer(auto_error=False)


def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> AuthContext:
    """Missing credentials are not rejected here; the use case answers 401."""
    return AuthContext(access_token=credentials.credentials if credentials else None)


@app.on_event("startup")
def open_database():
    db = get_database()
    logger.info(
        "%s started with %d users and %d facilities",
        settings.service_name,
        len(db.users),
        len(db.facilities),
    )


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a record or list of records in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# Session schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: EmailStr


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    role: str = Field(..., description="One of: Engineer, Manager, Auditor")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        valid = {r.value for r in RoleView}
        if v not in valid:
            raise ValueError(f"role must be one of: {sorted(valid)}")
        return v


class PasswordResetRequest(BaseModel):
    email: EmailStr


# ---------------------------------------------------------------------------
# Work order schemas
# ---------------------------------------------------------------------------

class LinkWorkOrdersRequest(BaseModel):
    work_order_ids: List[str] = Field(..., min_length=1)
    moc_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------

class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    role: str = Field(..., description="Operational role, e.g. ProcessEngineer")
    id: str = Field(default="")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        valid = {r.value for r in UserRole}
        if v not in valid:
            raise ValueError(f"role must be one of: {sorted(valid)}")
        return v


# ---------------------------------------------------------------------------
# Notification / preference schemas
# ---------------------------------------------------------------------------

class AddNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(default="")
    type: NotificationType = NotificationType.INFO
    link: Optional[str] = None


class UpdatePreferencesRequest(BaseModel):
    language: Optional[Language] = None
    theme: Optional[Theme] = None


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

session_router = APIRouter(prefix="/session", tags=["Session"])


@session_router.post("/login", summary="Sign in by email")
def login(
    body: LoginRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    """Issues an access token and a refresh token for an active user."""
    result = IssueSessionUseCase(services).execute(str(body.email), uow)
    return _ok(result)


@session_router.post("/refresh", summary="Mint a new access token")
def refresh(
    body: RefreshRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    result = RefreshSessionUseCase(services).execute(body.refresh_token, uow)
    return _ok(result)


@session_router.get("/me", summary="Resolve the user behind the access token")
def whoami(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    user = ValidateSessionUseCase(services).execute(ctx.access_token, uow)
    if user is None:
        raise AuthenticationError("Session expired or not authenticated.")
    return _ok(user)


@session_router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, summary="End the caller's session")
def logout(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    EndSessionUseCase(services).execute(ctx, uow)


@session_router.post("/register", status_code=status.HTTP_201_CREATED, summary="Self-registration")
def register(
    body: RegisterRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    """
    Creates the user with the operational role mapped from the chosen
    simplified role, then signs them in.
    """
    cmd = RegisterUserCommand(name=body.name, email=str(body.email), role=RoleView(body.role))
    result = RegisterUserUseCase(services).execute(cmd, uow)
    return _ok(result)


@session_router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED, summary="Request a password reset")
def password_reset(
    body: PasswordResetRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    RequestPasswordResetUseCase(services).execute(str(body.email), uow)
    return _ok({"email": str(body.email)})


# ---------------------------------------------------------------------------
# Facilities
# ---------------------------------------------------------------------------

facility_router = APIRouter(prefix="/facilities", tags=["Facilities"])


@facility_router.get("", summary="List facilities")
def list_facilities(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListFacilitiesUseCase(services).execute(ctx, uow))


@facility_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a facility")
def create_facility(
    body: Facility,
    location_query: Optional[str] = Query(
        default=None, description="Free-text location resolved through the geocoder."
    ),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    cmd = CreateFacilityCommand(ctx=ctx, facility=body, location_query=location_query)
    return _ok(CreateFacilityUseCase(services).execute(cmd, uow))


@facility_router.put("/{facility_id}", summary="Update a facility")
def update_facility(
    body: Facility,
    facility_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    body.id = facility_id
    return _ok(UpdateFacilityUseCase(services).execute(UpdateFacilityCommand(ctx=ctx, facility=body), uow))


@facility_router.delete("/{facility_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a facility")
def delete_facility(
    facility_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    DeleteFacilityUseCase(services).execute(DeleteFacilityCommand(ctx=ctx, facility_id=facility_id), uow)


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------

asset_router = APIRouter(prefix="/assets", tags=["Assets"])


@asset_router.get("", summary="List assets")
def list_assets(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListAssetsUseCase(services).execute(ctx, uow))


@asset_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an asset")
def create_asset(
    body: Asset,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(CreateAssetUseCase(services).execute(CreateAssetCommand(ctx=ctx, asset=body), uow))


@asset_router.put("/{asset_id}", summary="Update an asset")
def update_asset(
    body: Asset,
    asset_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    body.id = asset_id
    return _ok(UpdateAssetUseCase(services).execute(UpdateAssetCommand(ctx=ctx, asset=body), uow))


@asset_router.delete("/{tag}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete an asset by tag")
def delete_asset(
    tag: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    DeleteAssetUseCase(services).execute(DeleteAssetCommand(ctx=ctx, tag=tag), uow)


# ---------------------------------------------------------------------------
# MOC requests
# ---------------------------------------------------------------------------

moc_router = APIRouter(prefix="/mocs", tags=["Change Requests"])


@moc_router.get("", summary="List change requests")
def list_mocs(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListMOCsUseCase(services).execute(ctx, uow))


@moc_router.get("/{moc_id}", summary="Get a change request")
def get_moc(
    moc_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    result = GetMOCUseCase(services).execute(ctx, moc_id, uow)
    if result is None:
        raise NotFoundError(f"MOC {moc_id} not found.")
    return _ok(result)


@moc_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a change request")
def create_moc(
    body: MOCRequest,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(CreateMOCUseCase(services).execute(CreateMOCCommand(ctx=ctx, moc=body), uow))


@moc_router.put("/{moc_id}", summary="Save a new version of a change request")
def update_moc(
    body: MOCRequest,
    moc_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    """
    Status changes go through the approval workflow.  Rejecting requires a
    justification in the newest history entry; approving generates an
    implementation work order linked to the MOC.
    """
    body.id = moc_id
    return _ok(UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=ctx, moc=body), uow))


# ---------------------------------------------------------------------------
# Risks
# ---------------------------------------------------------------------------

risk_router = APIRouter(prefix="/risks", tags=["Risk Assessments"])


@risk_router.get("", summary="List risk assessments")
def list_risks(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListRisksUseCase(services).execute(ctx, uow))


@risk_router.put("", summary="Create or update a risk assessment")
def save_risk(
    body: RiskAssessment,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(SaveRiskUseCase(services).execute(SaveRiskCommand(ctx=ctx, risk=body), uow))


# ---------------------------------------------------------------------------
# Work orders
# ---------------------------------------------------------------------------

work_order_router = APIRouter(prefix="/work-orders", tags=["Work Orders"])


@work_order_router.get("", summary="List work orders")
def list_work_orders(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListWorkOrdersUseCase(services).execute(ctx, uow))


@work_order_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a work order")
def create_work_order(
    body: WorkOrder,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    cmd = CreateWorkOrderCommand(ctx=ctx, work_order=body)
    return _ok(CreateWorkOrderUseCase(services).execute(cmd, uow))


@work_order_router.get("/unlinked", summary="List work orders not linked to any MOC")
def list_unlinked_work_orders(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListUnlinkedWorkOrdersUseCase(services).execute(ctx, uow))


@work_order_router.get("/by-moc/{moc_id}", summary="List work orders linked to an MOC")
def list_work_orders_by_moc(
    moc_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListWorkOrdersByMOCUseCase(services).execute(ctx, moc_id, uow))


@work_order_router.post("/link", summary="Link existing work orders to an MOC")
def link_work_orders(
    body: LinkWorkOrdersRequest,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    cmd = LinkWorkOrdersCommand(ctx=ctx, work_order_ids=body.work_order_ids, moc_id=body.moc_id)
    return _ok(LinkWorkOrdersUseCase(services).execute(cmd, uow))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(prefix="/users", tags=["Users"])


@user_router.get("", summary="List users")
def list_users(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListUsersUseCase(services).execute(ctx, uow))


@user_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a user")
def create_user(
    body: CreateUserRequest,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    cmd = CreateUserCommand(
        ctx=ctx,
        name=body.name,
        email=str(body.email),
        role=UserRole(body.role),
        user_id=body.id,
    )
    return _ok(CreateUserUseCase(services).execute(cmd, uow))


@user_router.put("/{user_id}", summary="Edit a user (profile, role, active flag)")
def update_user(
    body: User,
    user_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    body.id = user_id
    return _ok(UpdateUserUseCase(services).execute(UpdateUserCommand(ctx=ctx, user=body), uow))


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

audit_router = APIRouter(prefix="/audit", tags=["Audit Trail"])


@audit_router.get("", summary="Read the audit trail, newest first")
def get_audit_trail(
    limit: Optional[int] = Query(default=None, ge=1),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListAuditTrailUseCase(services).execute(ctx, uow, limit=limit))


# ---------------------------------------------------------------------------
# Reference library
# ---------------------------------------------------------------------------

standard_router = APIRouter(prefix="/standards", tags=["Reference Library"])


@standard_router.get("", summary="List regulatory standards")
def list_standards(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListStandardsUseCase(services).execute(ctx, uow))


@standard_router.put("", summary="Create or update a regulatory standard")
def save_standard(
    body: RegulatoryStandard,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(SaveStandardUseCase(services).execute(SaveStandardCommand(ctx=ctx, standard=body), uow))


@standard_router.delete("/{standard_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a standard")
def delete_standard(
    standard_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    DeleteStandardUseCase(services).execute(DeleteStandardCommand(ctx=ctx, standard_id=standard_id), uow)


link_router = APIRouter(prefix="/links", tags=["Reference Library"])


@link_router.get("", summary="List useful links")
def list_links(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListLinksUseCase(services).execute(ctx, uow))


@link_router.put("", summary="Create or update a useful link")
def save_link(
    body: UsefulLink,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(SaveLinkUseCase(services).execute(SaveLinkCommand(ctx=ctx, link=body), uow))


@link_router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a link")
def delete_link(
    link_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    DeleteLinkUseCase(services).execute(DeleteLinkCommand(ctx=ctx, link_id=link_id), uow)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

notification_router = APIRouter(prefix="/notifications", tags=["Notifications"])


@notification_router.get("", summary="List notifications, newest first")
def list_notifications(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(ListNotificationsUseCase(services).execute(ctx, uow))


@notification_router.post("", status_code=status.HTTP_201_CREATED, summary="Push a notification")
def add_notification(
    body: AddNotificationRequest,
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    cmd = AddNotificationCommand(ctx=ctx, title=body.title, message=body.message, type=body.type, link=body.link)
    return _ok(AddNotificationUseCase(services).execute(cmd, uow))


@notification_router.post("/read-all", summary="Mark every notification as read")
def mark_all_notifications_read(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(MarkAllNotificationsReadUseCase(services).execute(ctx, uow))


@notification_router.post("/{notification_id}/read", summary="Mark a notification as read")
def mark_notification_read(
    notification_id: str = Path(...),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(MarkNotificationReadUseCase(services).execute(ctx, notification_id, uow))


@notification_router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Clear all notifications")
def clear_notifications(
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    ClearNotificationsUseCase(services).execute(ctx, uow)


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

preferences_router = APIRouter(prefix="/preferences", tags=["Preferences"])


@preferences_router.get("", summary="Read language and theme")
def get_preferences(
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    return _ok(GetPreferencesUseCase(services).execute(uow))


@preferences_router.put("", summary="Change language and/or theme")
def update_preferences(
    body: UpdatePreferencesRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    cmd = UpdatePreferencesCommand(language=body.language, theme=body.theme)
    return _ok(UpdatePreferencesUseCase(services).execute(cmd, uow))


# ---------------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------------

geocode_router = APIRouter(prefix="/geocode", tags=["Geocoding"])


@geocode_router.get("", summary="Resolve a free-text facility location")
def geocode(
    q: str = Query(..., min_length=1, description="Free-text location, e.g. 'Macae, RJ'"),
    ctx: AuthContext = Depends(get_auth_context),
    uow: AbstractUnitOfWork = Depends(get_uow),
    services: Services = Depends(get_services),
):
    """Falls back to a default offshore location when the lookup fails."""
    return _ok(GeocodeLocationUseCase(services).execute(ctx, q, uow))


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(session_router)
api_v1.include_router(facility_router)
api_v1.include_router(asset_router)
api_v1.include_router(moc_router)
api_v1.include_router(risk_router)
api_v1.include_router(work_order_router)
api_v1.include_router(user_router)
api_v1.include_router(audit_router)
api_v1.include_router(standard_router)
api_v1.include_router(link_router)
api_v1.include_router(notification_router)
api_v1.include_router(preferences_router)
api_v1.include_router(geocode_router)

app.include_router(api_v1)

# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
if settings.enable_mcp:
    mcp = FastApiMCP(app)
    mcp.mount()


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok", "service": settings.service_name}


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Session",
        "description": (
            "Email sign-in, token refresh, logout, self-registration and password "
            "reset requests.  Every other route expects the access token as a "
            "Bearer credential."
        ),
    },
    {
        "name": "Facilities",
        "description": "Platforms, FPSOs and onshore plants.  New facilities may be geocoded.",
    },
    {
        "name": "Assets",
        "description": "Tagged equipment.  Assets are updated by id and deleted by tag.",
    },
    {
        "name": "Change Requests",
        "description": (
            "Management of Change requests.  Rejection requires a justification; "
            "approval automatically generates an implementation work order."
        ),
    },
    {
        "name": "Risk Assessments",
        "description": "Probability × severity scoring on a 1–5 scale.",
    },
    {
        "name": "Work Orders",
        "description": (
            "Executable jobs.  Work orders may be created manually, generated by an "
            "approval, or linked in bulk to an existing MOC."
        ),
    },
    {
        "name": "Users",
        "description": "User administration (Admin only).  Users are deactivated, never deleted.",
    },
    {
        "name": "Audit Trail",
        "description": (
            "Capped, newest-first log of logins, logouts, writes with field-level "
            "diffs, denied attempts and automation events."
        ),
    },
    {
        "name": "Reference Library",
        "description": "Regulatory standards and useful links, open to every role.",
    },
    {
        "name": "Notifications",
        "description": "Client notification list, newest first and capped.",
    },
    {
        "name": "Preferences",
        "description": "Interface language and theme.",
    },
    {
        "name": "Geocoding",
        "description": "Free-text facility location lookup with a default fallback.",
    },
]

app.openapi_tags = tags_metadata
