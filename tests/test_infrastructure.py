"""Tests for the storage adapters, the Unit of Work and the HTTP geocoder."""

import json

import httpx
import pytest

from application import (
    AuthContext,
    IssueSessionUseCase,
    UpdateMOCCommand,
    UpdateMOCUseCase,
    UpdatePreferencesCommand,
    UpdatePreferencesUseCase,
)
from conftest import SEEDED_EMAILS
from infrastructure import (
    KEY_AUDIT_TRAIL,
    KEY_CURRENT_USER,
    KEY_FACILITIES,
    KEY_MOCS,
    KEY_NOTIFICATIONS,
    KEY_THEME,
    KEY_TOKEN,
    KEY_USERS,
    GeocodingError,
    HttpGeocoder,
    InMemoryDatabase,
    InMemoryUnitOfWork,
    JsonFileDatabase,
    build_database,
)
from model import AuditEntry, Facility, MOCStatus, Theme, User, WorkOrder


class TestInMemoryUnitOfWork:
    def test_records_are_handed_out_by_value(self, uow):
        facility = uow.facilities.get("FAC-001")
        facility.name = "renamed outside a save"
        assert uow.facilities.get("FAC-001").name == "P-74 FPSO"

    def test_exception_rolls_back_uncommitted_writes(self, uow):
        with pytest.raises(RuntimeError):
            with uow:
                uow.facilities.save(Facility(id="FAC-999", name="Ghost"))
                uow.work_orders.save(WorkOrder(id="WO-999", title="Ghost"))
                raise RuntimeError("boom")
        assert uow.facilities.get("FAC-999") is None
        assert uow.work_orders.get("WO-999") is None

    def test_commit_inside_block_survives_later_failure(self, uow):
        with pytest.raises(RuntimeError):
            with uow:
                uow.facilities.save(Facility(id="FAC-100", name="Kept"))
                uow.commit()
                uow.facilities.save(Facility(id="FAC-101", name="Dropped"))
                raise RuntimeError("boom")
        assert uow.facilities.get("FAC-100") is not None
        assert uow.facilities.get("FAC-101") is None

    def test_units_of_work_share_one_database(self, db):
        InMemoryUnitOfWork(db).facilities.save(Facility(id="FAC-200", name="Shared"))
        assert InMemoryUnitOfWork(db).facilities.get("FAC-200").name == "Shared"

    def test_unseeded_database_is_empty(self):
        db = InMemoryDatabase(seed=False)
        assert InMemoryUnitOfWork(db).users.list_all() == []

    def test_rollback_restores_logs_and_session_keys(self, uow):
        uow.session.save("access", "refresh", User(id="U-001", name="Alice Ward"))
        with pytest.raises(RuntimeError):
            with uow:
                uow.audit_trail.append(AuditEntry(id="log-new"))
                uow.session.clear()
                raise RuntimeError("boom")
        assert all(e.id != "log-new" for e in uow.audit_trail.list_all())
        assert uow.session.get_access_token() == "access"
        assert uow.session.get_current_user().name == "Alice Ward"

    def test_snapshot_shares_records_instead_of_copying_them(self, db):
        InMemoryUnitOfWork(db).audit_trail.append(AuditEntry(id="log-1"))
        state = db.snapshot()
        assert state["audit_trail"][0] is db.audit_trail[0]
        assert state["facilities"]["FAC-001"] is db.facilities["FAC-001"]


class TestJsonFileDatabase:
    def test_missing_file_is_seeded(self, tmp_path):
        db = JsonFileDatabase(str(tmp_path / "moc.json"))
        assert len(db.users) == 7
        assert not (tmp_path / "moc.json").exists()

    def test_committed_state_survives_reload(self, tmp_path, services):
        path = tmp_path / "data" / "moc.json"
        uow = InMemoryUnitOfWork(JsonFileDatabase(str(path)))
        session = IssueSessionUseCase(services).execute(SEEDED_EMAILS["committee"], uow)
        moc = uow.mocs.get("MOC-2024-001")
        moc.status = MOCStatus.APPROVED
        UpdateMOCUseCase(services).execute(
            UpdateMOCCommand(ctx=AuthContext(access_token=session.access_token), moc=moc), uow
        )
        UpdatePreferencesUseCase(services).execute(UpdatePreferencesCommand(theme=Theme.DARK), uow)

        document = json.loads(path.read_text(encoding="utf-8"))
        assert document[KEY_TOKEN] == session.access_token
        assert document[KEY_CURRENT_USER]["email"] == SEEDED_EMAILS["committee"]
        assert document[KEY_THEME] == "dark"
        assert document[KEY_AUDIT_TRAIL][0]["action"] == "WRITE"

        reloaded = InMemoryUnitOfWork(JsonFileDatabase(str(path)))
        stored = reloaded.mocs.get("MOC-2024-001")
        assert stored.status == MOCStatus.APPROVED
        assert stored.updated_at is not None
        assert stored.updated_at.tzinfo is not None
        assert any(wo.id.startswith("WO-AUTO-") for wo in reloaded.work_orders.list_for_moc("MOC-2024-001"))
        assert reloaded.audit_trail.list_all()[0].action.value == "WRITE"
        assert reloaded.preferences.get().theme == Theme.DARK
        assert reloaded.session.get_current_user().email == SEEDED_EMAILS["committee"]

    def test_absent_keys_are_seeded_independently(self, tmp_path):
        path = tmp_path / "moc.json"
        path.write_text(
            json.dumps({KEY_FACILITIES: [{"id": "FAC-X", "name": "Only", "coordinates": [1.5, 2.5]}]}),
            encoding="utf-8",
        )
        uow = InMemoryUnitOfWork(JsonFileDatabase(str(path)))
        facilities = uow.facilities.list_all()
        assert [f.id for f in facilities] == ["FAC-X"]
        assert facilities[0].coordinates == (1.5, 2.5)
        assert len(uow.mocs.list_all()) == 2
        assert uow.users.get_by_email(SEEDED_EMAILS["admin"]) is not None

    def test_build_database_honours_storage_path(self, tmp_path, settings):
        assert type(build_database(settings)) is InMemoryDatabase
        configured = settings.model_copy(update={"storage_path": str(tmp_path / "moc.json")})
        assert isinstance(build_database(configured), JsonFileDatabase)

    def test_written_document_uses_fixed_keys(self, tmp_path):
        path = tmp_path / "moc.json"
        db = JsonFileDatabase(str(path))
        db.flush()
        document = json.loads(path.read_text(encoding="utf-8"))
        assert {KEY_FACILITIES, KEY_MOCS, KEY_USERS, KEY_AUDIT_TRAIL} <= set(document)
        assert document[KEY_MOCS][0]["created_at"].startswith("2024-03-01T09:00:00")

    def test_oversized_logs_keep_their_newest_entries(self, tmp_path):
        path = tmp_path / "moc.json"
        path.write_text(
            json.dumps({
                KEY_AUDIT_TRAIL: [{"id": f"log-{n}"} for n in (5, 4, 3, 2, 1)],
                KEY_NOTIFICATIONS: [{"id": f"n-{n}"} for n in (3, 2, 1)],
            }),
            encoding="utf-8",
        )
        uow = InMemoryUnitOfWork(JsonFileDatabase(str(path), audit_capacity=3, notification_capacity=2))
        assert [e.id for e in uow.audit_trail.list_all()] == ["log-5", "log-4", "log-3"]
        assert [n.id for n in uow.notifications.list_all()] == ["n-3", "n-2"]


class TestHttpGeocoder:
    @staticmethod
    def _geocoder(handler) -> HttpGeocoder:
        return HttpGeocoder("https://geo.example.org", transport=httpx.MockTransport(handler))

    def test_parses_first_result(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(
                200,
                json=[{"lat": "-22.3711", "lon": "-41.7869", "display_name": "Macae, RJ, Brazil", "type": "city"}],
            )

        location = self._geocoder(handler).lookup("Macae")
        assert seen["url"].path == "/search"
        assert seen["url"].params["q"] == "Macae"
        assert location.lat == pytest.approx(-22.3711)
        assert location.lng == pytest.approx(-41.7869)
        assert location.address == "Macae, RJ, Brazil"
        assert "openstreetmap.org" in location.map_url

    def test_empty_result_raises(self):
        with pytest.raises(GeocodingError):
            self._geocoder(lambda request: httpx.Response(200, json=[])).lookup("Atlantis")

    def test_http_error_raises(self):
        with pytest.raises(GeocodingError):
            self._geocoder(lambda request: httpx.Response(503)).lookup("Macae")

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GeocodingError):
            self._geocoder(handler).lookup("Macae")
