"""Use case tests: the facade behaviour of every operation, end to end over
the in-memory Unit of Work."""

from datetime import date

import pytest

from application import (
    AddNotificationCommand,
    AddNotificationUseCase,
    AuthContext,
    AuthenticationError,
    AuthorizationError,
    CreateAssetCommand,
    CreateAssetUseCase,
    CreateFacilityCommand,
    CreateFacilityUseCase,
    CreateMOCCommand,
    CreateMOCUseCase,
    CreateUserCommand,
    CreateUserUseCase,
    CreateWorkOrderCommand,
    CreateWorkOrderUseCase,
    DeleteAssetCommand,
    DeleteAssetUseCase,
    DeleteFacilityCommand,
    DeleteFacilityUseCase,
    DeleteLinkCommand,
    DeleteLinkUseCase,
    EndSessionUseCase,
    GetMOCUseCase,
    GetPreferencesUseCase,
    IssueSessionUseCase,
    LinkWorkOrdersCommand,
    LinkWorkOrdersUseCase,
    ListAuditTrailUseCase,
    ListMOCsUseCase,
    ListNotificationsUseCase,
    ListUnlinkedWorkOrdersUseCase,
    ListWorkOrdersByMOCUseCase,
    MarkAllNotificationsReadUseCase,
    NotFoundError,
    RefreshSessionUseCase,
    RegisterUserCommand,
    RegisterUserUseCase,
    RequestPasswordResetUseCase,
    SaveLinkCommand,
    SaveLinkUseCase,
    SaveRiskCommand,
    SaveRiskUseCase,
    SaveStandardCommand,
    SaveStandardUseCase,
    Services,
    UpdateAssetCommand,
    UpdateAssetUseCase,
    UpdateMOCCommand,
    UpdateMOCUseCase,
    UpdatePreferencesCommand,
    UpdatePreferencesUseCase,
    UpdateUserCommand,
    UpdateUserUseCase,
    ValidateSessionUseCase,
    ValidationError,
)
from conftest import SEEDED_EMAILS
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import (
    Asset,
    AuditAction,
    Facility,
    HistoryEntryType,
    Language,
    MOCHistoryEntry,
    MOCRequest,
    MOCStatus,
    RegulatoryStandard,
    RiskAssessment,
    RoleView,
    Theme,
    UsefulLink,
    UserRole,
    WorkOrder,
)
from service import FALLBACK_LOCATION


def _audit(uow):
    return uow.audit_trail.list_all()


def _stored_moc(uow, moc_id="MOC-2024-001") -> MOCRequest:
    return uow.mocs.get(moc_id)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class TestSession:
    def test_login_stores_session_and_audits(self, services, uow):
        session = IssueSessionUseCase(services).execute(SEEDED_EMAILS["hse"], uow)
        assert session.user.role == UserRole.HSE_COORDINATOR
        assert session.role_view == RoleView.AUDITOR.value
        assert uow.session.get_access_token() == session.access_token
        assert uow.session.get_current_user().id == "U-005"
        head = _audit(uow)[0]
        assert head.action == AuditAction.LOGIN
        assert head.resource == "AUTHENTICATION"

    @pytest.mark.parametrize("email", ["former@mocstudio.io", "nobody@mocstudio.io", "ADMIN@mocstudio.io"])
    def test_login_requires_active_exact_match(self, services, uow, email):
        with pytest.raises(AuthenticationError):
            IssueSessionUseCase(services).execute(email, uow)
        assert uow.session.get_access_token() is None

    def test_expired_token_tears_session_down(self, services, uow, clock, engineer_ctx):
        clock.advance(hours=1)
        with pytest.raises(AuthenticationError):
            ListMOCsUseCase(services).execute(engineer_ctx, uow)
        assert uow.session.get_access_token() is None
        assert uow.session.get_current_user() is None
        head = _audit(uow)[0]
        assert head.action == AuditAction.LOGOUT
        assert head.user_id == "U-003"

    def test_missing_token_is_unauthenticated(self, services, uow):
        with pytest.raises(AuthenticationError):
            ListMOCsUseCase(services).execute(AuthContext(), uow)

    def test_foreign_token_failure_leaves_stored_session_alone(self, services, uow, engineer_ctx):
        stored_token = uow.session.get_access_token()
        audit_size = len(_audit(uow))
        for ctx in (AuthContext(), AuthContext(access_token="garbage")):
            with pytest.raises(AuthenticationError):
                ListMOCsUseCase(services).execute(ctx, uow)
        assert uow.session.get_access_token() == stored_token
        assert uow.session.get_current_user().id == "U-003"
        assert len(_audit(uow)) == audit_size
        assert all(entry.action != AuditAction.LOGOUT for entry in _audit(uow))

    def test_expired_earlier_token_does_not_end_the_current_session(self, services, uow, clock, engineer_ctx):
        clock.advance(hours=1)
        IssueSessionUseCase(services).execute(SEEDED_EMAILS["manager"], uow)
        with pytest.raises(AuthenticationError):
            ListMOCsUseCase(services).execute(engineer_ctx, uow)
        assert uow.session.get_current_user().id == "U-002"
        assert _audit(uow)[0].action == AuditAction.LOGIN

    def test_failed_refresh_with_foreign_token_keeps_session(self, services, uow, manager_ctx):
        with pytest.raises(AuthenticationError):
            RefreshSessionUseCase(services).execute("not-a-token", uow)
        assert uow.session.get_current_user().id == "U-002"
        assert uow.session.get_refresh_token() is not None

    def test_refresh_mints_new_access_token(self, services, uow, clock):
        session = IssueSessionUseCase(services).execute(SEEDED_EMAILS["manager"], uow)
        clock.advance(hours=2)
        refreshed = RefreshSessionUseCase(services).execute(session.refresh_token, uow)
        assert refreshed.refresh_token == session.refresh_token
        assert uow.session.get_access_token() == refreshed.access_token
        assert ValidateSessionUseCase(services).execute(refreshed.access_token, uow).id == "U-002"

    def test_refresh_fails_for_deactivated_user(self, services, uow, admin_ctx):
        session = IssueSessionUseCase(services).execute(SEEDED_EMAILS["engineer"], uow)
        engineer = uow.users.get("U-003")
        engineer.active = False
        UpdateUserUseCase(services).execute(UpdateUserCommand(ctx=admin_ctx, user=engineer), uow)
        with pytest.raises(AuthenticationError):
            RefreshSessionUseCase(services).execute(session.refresh_token, uow)
        assert uow.session.get_refresh_token() is None

    def test_logout_audits_and_clears(self, services, uow, tech_ctx):
        EndSessionUseCase(services).execute(tech_ctx, uow)
        assert uow.session.get_access_token() is None
        head = _audit(uow)[0]
        assert head.action == AuditAction.LOGOUT
        assert head.user_name == "Tomas Silva"

    def test_logout_with_another_token_keeps_stored_session(self, services, uow, login):
        engineer = login(SEEDED_EMAILS["engineer"])
        login(SEEDED_EMAILS["manager"])
        EndSessionUseCase(services).execute(engineer, uow)
        assert uow.session.get_current_user().id == "U-002"
        head = _audit(uow)[0]
        assert head.action == AuditAction.LOGOUT
        assert head.user_id == "U-003"

    def test_logout_requires_a_valid_token(self, services, uow, tech_ctx):
        audit_size = len(_audit(uow))
        with pytest.raises(AuthenticationError):
            EndSessionUseCase(services).execute(AuthContext(), uow)
        assert uow.session.get_current_user().id == "U-004"
        assert len(_audit(uow)) == audit_size

    def test_register_maps_role_view_and_signs_in(self, services, uow):
        cmd = RegisterUserCommand(name="Ana Souza", email="ana@mocstudio.io", role=RoleView.AUDITOR)
        session = RegisterUserUseCase(services).execute(cmd, uow)
        assert session.user.role == UserRole.HSE_COORDINATOR
        assert uow.users.get_by_email("ana@mocstudio.io") is not None
        with pytest.raises(ValidationError):
            RegisterUserUseCase(services).execute(cmd, uow)

    def test_password_reset(self, services, uow):
        with pytest.raises(NotFoundError):
            RequestPasswordResetUseCase(services).execute("ghost@mocstudio.io", uow)
        RequestPasswordResetUseCase(services).execute(SEEDED_EMAILS["tech"], uow)
        assert _audit(uow)[0].action == AuditAction.PASSWORD_RESET_REQUEST


class TestSnapshotStaleness:
    def test_role_change_is_invisible_until_refresh(self, services, uow, engineer_ctx, admin_ctx):
        engineer = uow.users.get("U-003")
        engineer.role = UserRole.MAINTENANCE_TECH
        UpdateUserUseCase(services).execute(UpdateUserCommand(ctx=admin_ctx, user=engineer), uow)

        # The old token still carries ProcessEngineer and may still read MOCs.
        assert len(ListMOCsUseCase(services).execute(engineer_ctx, uow)) == 2

    def test_revalidation_closes_the_window(self, settings, clock, uow, engineer_ctx, admin_ctx):
        engineer = uow.users.get("U-003")
        engineer.active = False
        base = Services.build(settings, clock=clock)
        UpdateUserUseCase(base).execute(UpdateUserCommand(ctx=admin_ctx, user=engineer), uow)

        strict = Services.build(settings.model_copy(update={"revalidate_sessions": True}), clock=clock)
        assert ListMOCsUseCase(base).execute(engineer_ctx, uow)
        with pytest.raises(AuthenticationError):
            ListMOCsUseCase(strict).execute(engineer_ctx, uow)


# ---------------------------------------------------------------------------
# Authorization gate
# ---------------------------------------------------------------------------

class TestAuthorizationGate:
    def test_denied_write_is_audited_and_changes_nothing(self, services, uow, tech_ctx):
        proposed = _stored_moc(uow)
        proposed.status = MOCStatus.APPROVED
        with pytest.raises(AuthorizationError):
            UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=tech_ctx, moc=proposed), uow)

        head = _audit(uow)[0]
        assert head.action == AuditAction.SECURITY_VIOLATION
        assert head.resource == "MOCS"
        assert head.details == "DENIED ATTEMPT: Tomas Silva (MaintenanceTech) tried to write MOCS"
        assert _stored_moc(uow).status == MOCStatus.EVALUATION
        assert [wo.id for wo in uow.work_orders.list_for_moc("MOC-2024-001")] == ["WO-1001"]

    def test_denied_read_is_audited(self, services, uow, tech_ctx):
        with pytest.raises(AuthorizationError):
            ListMOCsUseCase(services).execute(tech_ctx, uow)
        head = _audit(uow)[0]
        assert head.action == AuditAction.SECURITY_VIOLATION
        assert "tried to read MOCS" in head.details

    def test_reads_are_not_audited(self, services, uow, engineer_ctx):
        before = len(_audit(uow))
        ListMOCsUseCase(services).execute(engineer_ctx, uow)
        GetMOCUseCase(services).execute(engineer_ctx, "MOC-2024-001", uow)
        assert len(_audit(uow)) == before

    def test_unknown_target_fails_before_authorization(self, services, uow, tech_ctx):
        before = len(_audit(uow))
        with pytest.raises(NotFoundError):
            UpdateMOCUseCase(services).execute(
                UpdateMOCCommand(ctx=tech_ctx, moc=MOCRequest(id="MOC-404", title="x")), uow
            )
        assert len(_audit(uow)) == before

    def test_reference_library_is_open_to_every_role(self, services, uow, hse_ctx):
        standard = RegulatoryStandard(code="ISO 31000", title="Risk management")
        saved = SaveStandardUseCase(services).execute(SaveStandardCommand(ctx=hse_ctx, standard=standard), uow)
        assert saved.id == "STD-ISO 31000"
        assert _audit(uow)[0].action == AuditAction.WRITE

    def test_audit_trail_is_admin_only(self, services, uow, manager_ctx):
        with pytest.raises(AuthorizationError):
            ListAuditTrailUseCase(services).execute(manager_ctx, uow)


# ---------------------------------------------------------------------------
# MOC workflow
# ---------------------------------------------------------------------------

class TestMOCWorkflow:
    def test_rejection_requires_justification(self, services, uow, committee_ctx):
        before = len(_audit(uow))
        proposed = _stored_moc(uow)
        proposed.status = MOCStatus.REJECTED
        proposed.history.insert(0, MOCHistoryEntry(id="h-new", user_id="U-006", action="Rejected"))
        with pytest.raises(ValidationError, match="justification"):
            UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=committee_ctx, moc=proposed), uow)
        assert _stored_moc(uow).status == MOCStatus.EVALUATION
        assert len(_audit(uow)) == before

    def test_justified_rejection_is_saved_with_diff(self, services, uow, committee_ctx):
        proposed = _stored_moc(uow)
        proposed.status = MOCStatus.REJECTED
        proposed.history.insert(
            0, MOCHistoryEntry(id="h-new", user_id="U-006", action="Rejected", details="HAZOP not closed")
        )
        UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=committee_ctx, moc=proposed), uow)

        assert _stored_moc(uow).status == MOCStatus.REJECTED
        head = _audit(uow)[0]
        assert head.details == "Updating MOC MOC-2024-001 to Rejected"
        assert [c.field for c in head.changes] == ["status"]

    def test_approval_generates_exactly_one_work_order(self, services, uow, clock, committee_ctx):
        before = len(uow.work_orders.list_all())
        proposed = _stored_moc(uow)
        proposed.status = MOCStatus.APPROVED
        saved = UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=committee_ctx, moc=proposed), uow)

        generated = [wo for wo in uow.work_orders.list_all() if wo.id.startswith("WO-AUTO-")]
        assert len(uow.work_orders.list_all()) == before + 1
        assert len(generated) == 1
        assert generated[0].moc_id == "MOC-2024-001"
        assert saved.history[0].type == HistoryEntryType.SYSTEM
        assert generated[0].id in saved.history[0].details
        assert saved.updated_at == clock()

        actions = [e.action for e in _audit(uow)[:2]]
        assert actions == [AuditAction.WRITE, AuditAction.AUTOMATION]

        # Saving the approved MOC again must not cascade.
        clock.advance(minutes=5)
        again = _stored_moc(uow)
        again.discipline = "Rotating Equipment"
        UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=committee_ctx, moc=again), uow)
        assert len(uow.work_orders.list_all()) == before + 1

    def test_approvals_in_the_same_instant_get_distinct_work_orders(self, services, uow, committee_ctx):
        for moc_id in ("MOC-2024-001", "MOC-2024-002"):
            proposed = _stored_moc(uow, moc_id)
            proposed.status = MOCStatus.APPROVED
            UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=committee_ctx, moc=proposed), uow)

        generated = {wo.moc_id: wo.id for wo in uow.work_orders.list_all() if wo.id.startswith("WO-AUTO-")}
        assert set(generated) == {"MOC-2024-001", "MOC-2024-002"}
        assert len(set(generated.values())) == 2
        for moc_id, wo_id in generated.items():
            assert wo_id in _stored_moc(uow, moc_id).history[0].details

    def test_relief_valve_change_end_to_end(self, services, uow, login):
        engineer = login(SEEDED_EMAILS["engineer"])
        draft = MOCRequest(title="Replace relief valve PSV-101", facility="FAC-001", related_asset_tags=["V-201"])
        created = CreateMOCUseCase(services).execute(CreateMOCCommand(ctx=engineer, moc=draft), uow)
        assert created.id == "MOC-2024-003"
        assert created.status == MOCStatus.DRAFT

        committee = login(SEEDED_EMAILS["committee"])
        approved = GetMOCUseCase(services).execute(committee, created.id, uow)
        approved.status = MOCStatus.APPROVED
        UpdateMOCUseCase(services).execute(UpdateMOCCommand(ctx=committee, moc=approved), uow)

        tech = login(SEEDED_EMAILS["tech"])
        orders = ListWorkOrdersByMOCUseCase(services).execute(tech, created.id, uow)
        assert len(orders) == 1
        assert orders[0].title == "IMPLEMENTATION: Replace relief valve PSV-101"
        assert orders[0].due_date == date(2024, 6, 8)

        head = uow.mocs.get(created.id).history[0]
        assert head.type == HistoryEntryType.SYSTEM
        assert orders[0].id in head.details

    def test_get_unknown_moc_returns_none(self, services, uow, engineer_ctx):
        assert GetMOCUseCase(services).execute(engineer_ctx, "MOC-404", uow) is None

    def test_create_rejects_duplicate_id(self, services, uow, engineer_ctx):
        with pytest.raises(ValidationError):
            CreateMOCUseCase(services).execute(
                CreateMOCCommand(ctx=engineer_ctx, moc=MOCRequest(id="MOC-2024-001", title="dup")), uow
            )

    def test_risk_score_is_recomputed(self, services, uow, hse_ctx):
        risk = RiskAssessment(moc_id="MOC-2024-001", probability=3, severity=4, score=99)
        saved = SaveRiskUseCase(services).execute(SaveRiskCommand(ctx=hse_ctx, risk=risk), uow)
        assert saved.score == 12
        assert uow.risks.get(saved.id).score == 12


# ---------------------------------------------------------------------------
# Plant, work orders and users
# ---------------------------------------------------------------------------

class TestPlantAndWorkOrders:
    def test_facility_geocoding_falls_back(self, services, uow, manager_ctx):
        cmd = CreateFacilityCommand(ctx=manager_ctx, facility=Facility(name="P-80 FPSO"), location_query="Buzios")
        facility = CreateFacilityUseCase(services).execute(cmd, uow)
        assert facility.coordinates == (FALLBACK_LOCATION.lat, FALLBACK_LOCATION.lng)
        assert facility.address == FALLBACK_LOCATION.address
        assert uow.facilities.get(facility.id).name == "P-80 FPSO"

    def test_asset_edit_is_diffed_and_delete_is_by_tag(self, services, uow, tech_ctx):
        asset = uow.assets.get("AST-001")
        asset.material = "Super Duplex SS"
        UpdateAssetUseCase(services).execute(UpdateAssetCommand(ctx=tech_ctx, asset=asset), uow)
        head = _audit(uow)[0]
        assert [(c.field, c.old_value, c.new_value) for c in head.changes] == [
            ("material", "Duplex SS", "Super Duplex SS")
        ]

        DeleteAssetUseCase(services).execute(DeleteAssetCommand(ctx=tech_ctx, tag="P-101A"), uow)
        assert uow.assets.get_by_tag("P-101A") is None
        with pytest.raises(NotFoundError):
            DeleteAssetUseCase(services).execute(DeleteAssetCommand(ctx=tech_ctx, tag="P-101A"), uow)

    def test_asset_tags_are_unique(self, services, uow, tech_ctx):
        with pytest.raises(ValidationError):
            CreateAssetUseCase(services).execute(CreateAssetCommand(ctx=tech_ctx, asset=Asset(tag="V-201")), uow)

    def test_link_work_orders(self, services, uow, tech_ctx):
        created = CreateWorkOrderUseCase(services).execute(
            CreateWorkOrderCommand(ctx=tech_ctx, work_order=WorkOrder(title="Replace gasket set")), uow
        )
        assert {wo.id for wo in ListUnlinkedWorkOrdersUseCase(services).execute(tech_ctx, uow)} == {
            "WO-1002",
            created.id,
        }

        cmd = LinkWorkOrdersCommand(ctx=tech_ctx, work_order_ids=["WO-1002", created.id], moc_id="MOC-2024-002")
        linked = LinkWorkOrdersUseCase(services).execute(cmd, uow)
        assert {wo.moc_id for wo in linked} == {"MOC-2024-002"}
        assert ListUnlinkedWorkOrdersUseCase(services).execute(tech_ctx, uow) == []
        assert _audit(uow)[0].details == "Linked 2 operational work orders to MOC MOC-2024-002"

    def test_link_to_unknown_moc(self, services, uow, tech_ctx):
        cmd = LinkWorkOrdersCommand(ctx=tech_ctx, work_order_ids=["WO-1002"], moc_id="MOC-404")
        with pytest.raises(NotFoundError):
            LinkWorkOrdersUseCase(services).execute(cmd, uow)

    def test_facility_ids_are_not_reused_after_delete(self, services, uow, manager_ctx):
        DeleteFacilityUseCase(services).execute(DeleteFacilityCommand(ctx=manager_ctx, facility_id="FAC-001"), uow)
        created = CreateFacilityUseCase(services).execute(
            CreateFacilityCommand(ctx=manager_ctx, facility=Facility(name="New FPSO")), uow
        )
        assert created.id == "FAC-004"
        assert uow.facilities.get("FAC-003").name != "New FPSO"

    def test_link_ids_are_not_reused_after_delete(self, services, uow, tech_ctx):
        DeleteLinkUseCase(services).execute(DeleteLinkCommand(ctx=tech_ctx, link_id="LNK-001"), uow)
        saved = SaveLinkUseCase(services).execute(
            SaveLinkCommand(ctx=tech_ctx, link=UsefulLink(label="Internal wiki", url="https://wiki.mocstudio.io")),
            uow,
        )
        assert saved.id == "LNK-003"
        assert {link.id for link in uow.links.list_all()} == {"LNK-002", "LNK-003"}


class TestUsers:
    def test_create_user_rejects_duplicate_email(self, services, uow, admin_ctx):
        cmd = CreateUserCommand(ctx=admin_ctx, name="Dup", email=SEEDED_EMAILS["tech"], role=UserRole.ADMIN)
        with pytest.raises(ValidationError):
            CreateUserUseCase(services).execute(cmd, uow)

    def test_create_user(self, services, uow, admin_ctx):
        cmd = CreateUserCommand(ctx=admin_ctx, name="Lia Prado", email="lia@mocstudio.io", role=UserRole.HSE_COORDINATOR)
        user = CreateUserUseCase(services).execute(cmd, uow)
        assert uow.users.get(user.id).email == "lia@mocstudio.io"
        assert _audit(uow)[0].details == "New user created: lia@mocstudio.io (HSECoordinator)"

    def test_editing_the_signed_in_user_refreshes_stored_snapshot(self, services, uow, admin_ctx):
        admin = uow.users.get("U-001")
        admin.name = "Alice W. Ward"
        UpdateUserUseCase(services).execute(UpdateUserCommand(ctx=admin_ctx, user=admin), uow)
        assert uow.session.get_current_user().name == "Alice W. Ward"


# ---------------------------------------------------------------------------
# Capped logs and client state
# ---------------------------------------------------------------------------

class TestCappedLogs:
    def test_audit_trail_keeps_newest_thousand(self, services, uow):
        with uow:
            for i in range(1001):
                uow.audit_trail.append(
                    services.audit.build_system_entry(AuditAction.AUTOMATION, "WORK_ORDERS", f"event {i}")
                )
        entries = _audit(uow)
        assert len(entries) == 1000
        assert entries[0].details == "event 1000"
        assert entries[-1].details == "event 1"

    def test_audit_list_limit(self, services):
        db = InMemoryDatabase(audit_capacity=3)
        uow = InMemoryUnitOfWork(db)
        for _ in range(4):
            IssueSessionUseCase(services).execute(SEEDED_EMAILS["admin"], uow)
        ctx = AuthContext(access_token=uow.session.get_access_token())
        assert len(ListAuditTrailUseCase(services).execute(ctx, uow)) == 3
        assert len(ListAuditTrailUseCase(services).execute(ctx, uow, limit=2)) == 2

    def test_notifications_are_capped_newest_first(self, services, uow, clock, engineer_ctx):
        for i in range(51):
            clock.advance(seconds=1)
            AddNotificationUseCase(services).execute(
                AddNotificationCommand(ctx=engineer_ctx, title=f"n{i}", message="m"), uow
            )
        notes = ListNotificationsUseCase(services).execute(engineer_ctx, uow)
        assert len(notes) == 50
        assert notes[0].title == "n50"
        assert notes[-1].title == "n1"

        MarkAllNotificationsReadUseCase(services).execute(engineer_ctx, uow)
        assert all(n.read for n in ListNotificationsUseCase(services).execute(engineer_ctx, uow))

    def test_preferences_round_trip(self, services, uow):
        assert GetPreferencesUseCase(services).execute(uow).language == Language.EN_US
        UpdatePreferencesUseCase(services).execute(UpdatePreferencesCommand(theme=Theme.DARK), uow)
        prefs = GetPreferencesUseCase(services).execute(uow)
        assert prefs.theme == Theme.DARK
        assert prefs.language == Language.EN_US
