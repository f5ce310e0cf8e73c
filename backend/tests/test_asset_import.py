"""
Tests for the bulk employee/asset import.

All tests run against the in-memory FakeEmployeeStore from conftest.
"""

import httpx
import pytest

from conftest import ASSET_HEADER, FakeEmployeeStore, make_csv
from app.services.asset_import import import_table, import_upload, stage_rows, validate_table
from app.services.errors import ImportValidationError, StoreError
from app.services.spreadsheet_parser import read_table


def _row(email="jane.doe@corp.com", serial="SN1", manufacturer="Dell", model="Latitude 7420",
         condition="Good", manager=""):
    return [email, serial, manufacturer, model, condition, manager]


def _upload(store, rows, header=None):
    return import_upload(store, make_csv([header or ASSET_HEADER, *rows]), "assets.csv")


def _serials(store, email):
    return [a["serial_number"] for a in store.find_by_email(email)["assets"]]


class TestCreateAndMerge:

    def test_new_employee_created_with_assets(self, store):
        summary = _upload(store, [_row(serial="SN1"), _row(serial="SN2")])

        assert summary.employees_created == 1
        assert summary.assets_created == 2
        assert _serials(store, "jane.doe@corp.com") == ["SN1", "SN2"]

    def test_rows_grouped_per_employee(self, store):
        summary = _upload(store, [
            _row(email="a@corp.com", serial="SN1"),
            _row(email="b@corp.com", serial="SN2"),
            _row(email="a@corp.com", serial="SN3"),
        ])

        assert summary.employees_created == 2
        assert _serials(store, "a@corp.com") == ["SN1", "SN3"]
        assert _serials(store, "b@corp.com") == ["SN2"]

    def test_email_is_normalized(self, store):
        _upload(store, [_row(email="Jane.Doe@Corp.com")])

        assert store.find_by_email("jane.doe@corp.com") is not None

    def test_existing_employee_gains_only_new_serials(self, store):
        _upload(store, [_row(serial="SN1")])

        summary = _upload(store, [_row(serial="SN1"), _row(serial="SN2")])

        assert summary.employees_merged == 1
        assert summary.assets_created == 1
        assert _serials(store, "jane.doe@corp.com") == ["SN1", "SN2"]

    def test_reimport_is_idempotent(self, store):
        rows = [_row(email="a@corp.com", serial="SN1"), _row(email="b@corp.com", serial="SN2")]
        _upload(store, rows)
        before = store.list_employees()

        summary = _upload(store, rows)

        assert summary.employees_unchanged == 2
        assert summary.assets_created == 0
        assert [e["assets"] for e in store.list_employees()] == [e["assets"] for e in before]

    def test_import_order_does_not_change_final_serial_set(self):
        first, second = FakeEmployeeStore(), FakeEmployeeStore()
        a = [_row(serial="SN1"), _row(serial="SN2")]
        b = [_row(serial="SN2"), _row(serial="SN3")]

        _upload(first, a)
        _upload(first, b)
        _upload(second, b)
        _upload(second, a)

        assert set(_serials(first, "jane.doe@corp.com")) == {"SN1", "SN2", "SN3"}
        assert set(_serials(second, "jane.doe@corp.com")) == {"SN1", "SN2", "SN3"}

    def test_existing_asset_fields_are_never_overwritten(self, store):
        _upload(store, [_row(serial="SN1", condition="Good")])
        employee = store.find_by_email("jane.doe@corp.com")
        store.update_employee(employee["id"], {"email_sent": True})

        _upload(store, [_row(serial="SN1", condition="Broken"), _row(serial="SN2")])

        employee = store.find_by_email("jane.doe@corp.com")
        assert employee["assets"][0]["asset_condition"] == "Good"
        assert employee["email_sent"] is True

    def test_appended_assets_continue_positions(self, store):
        _upload(store, [_row(serial="SN1"), _row(serial="SN2")])

        _upload(store, [_row(serial="SN3")])

        positions = [a["position"] for a in store.find_by_email("jane.doe@corp.com")["assets"]]
        assert positions == [0, 1, 2]


class TestDuplicates:

    def test_repeated_serial_within_upload_skipped(self, store):
        summary = _upload(store, [
            _row(serial="SN1", condition="Good"),
            _row(serial="SN1", condition="Broken"),
        ])

        assert summary.duplicates_skipped == 1
        assets = store.find_by_email("jane.doe@corp.com")["assets"]
        assert len(assets) == 1
        assert assets[0]["asset_condition"] == "Good"

    def test_serial_held_by_other_employee_reported_and_others_imported(self, store):
        _upload(store, [_row(email="a@corp.com", serial="SN1")])

        summary = _upload(store, [
            _row(email="b@corp.com", serial="SN1"),
            _row(email="c@corp.com", serial="SN9"),
        ])

        assert summary.employees_created == 1
        assert [f.email for f in summary.failures] == ["b@corp.com"]
        assert summary.failures[0].error_code == "duplicate_key"
        assert store.find_by_email("b@corp.com") is None
        assert _serials(store, "c@corp.com") == ["SN9"]

    def test_store_failure_for_one_employee_does_not_stop_the_rest(self, store, monkeypatch):
        real_create = store.create_employee

        def flaky_create(fields, assets):
            if fields["internet_email"] == "b@corp.com":
                raise StoreError("Create employee failed")
            return real_create(fields, assets)

        monkeypatch.setattr(store, "create_employee", flaky_create)

        summary = _upload(store, [
            _row(email="a@corp.com", serial="SN1"),
            _row(email="b@corp.com", serial="SN2"),
            _row(email="c@corp.com", serial="SN3"),
        ])

        assert summary.employees_created == 2
        assert summary.failures[0].email == "b@corp.com"
        assert summary.failures[0].error_code == "store_error"

    def test_connection_error_for_one_employee_does_not_stop_the_rest(self, store, monkeypatch):
        real_find = store.find_by_email

        def dropping_find(email):
            if email == "a@corp.com":
                raise httpx.ConnectError("connection reset by peer")
            return real_find(email)

        monkeypatch.setattr(store, "find_by_email", dropping_find)

        summary = _upload(store, [
            _row(email="a@corp.com", serial="SN1"),
            _row(email="b@corp.com", serial="SN2"),
        ])

        assert summary.employees_created == 1
        assert _serials(store, "b@corp.com") == ["SN2"]
        assert [f.email for f in summary.failures] == ["a@corp.com"]
        assert summary.failures[0].error_code == "store_error"


class TestValidation:

    def test_missing_required_header_rejects_upload(self, store):
        header = ["internetEmail", "manufacturerName"]

        with pytest.raises(ImportValidationError) as exc_info:
            _upload(store, [["a@corp.com", "Dell"]], header=header)

        assert exc_info.value.errors[0]["column"] == "serialNumber"
        assert store.list_employees() == []

    def test_headers_match_case_insensitively(self, store):
        header = ["INTERNETEMAIL", "SerialNumber"]

        summary = _upload(store, [["a@corp.com", "SN1"]], header=header)

        assert summary.employees_created == 1

    def test_every_bad_row_reported_and_nothing_written(self, store):
        with pytest.raises(ImportValidationError) as exc_info:
            _upload(store, [
                _row(email="good@corp.com", serial="SN1"),
                _row(email="not-an-email", serial="SN2"),
                _row(email="other@corp.com", serial=""),
            ])

        errors = exc_info.value.errors
        assert {(e["row"], e["column"]) for e in errors} == {(3, "internetEmail"), (4, "serialNumber")}
        assert store.list_employees() == []

    def test_bad_manager_email_is_a_validation_error(self, store):
        with pytest.raises(ImportValidationError) as exc_info:
            _upload(store, [_row(manager="boss-at-corp")])

        assert exc_info.value.errors[0]["column"] == "managerEmailId"

    def test_bad_timestamp_is_a_validation_error(self, store):
        header = ["internetEmail", "serialNumber", "lastEmailSentAt"]

        with pytest.raises(ImportValidationError):
            _upload(store, [["a@corp.com", "SN1", "last tuesday"]], header=header)

    def test_unknown_columns_are_ignored(self, store):
        header = ["internetEmail", "serialNumber", "favouriteColour"]

        summary = _upload(store, [["a@corp.com", "SN1", "teal"]], header=header)

        assert summary.employees_created == 1
        assert "favouriteColour" not in store.find_by_email("a@corp.com")["assets"][0]


class TestCampaignColumns:

    def test_campaign_state_applied_on_create(self, store):
        header = ["internetEmail", "serialNumber", "emailSent", "lastEmailSentAt"]

        _upload(store, [["a@corp.com", "SN1", "true", "2024-03-01T09:00:00Z"]], header=header)

        employee = store.find_by_email("a@corp.com")
        assert employee["email_sent"] is True
        assert employee["last_email_sent_at"].startswith("2024-03-01T09:00:00")

    def test_only_literal_true_sets_flag(self, store):
        header = ["internetEmail", "serialNumber", "emailSent"]

        _upload(store, [["a@corp.com", "SN1", "yes"]], header=header)

        assert store.find_by_email("a@corp.com")["email_sent"] is False

    def test_campaign_state_ignored_for_existing_employee(self, store):
        header = ["internetEmail", "serialNumber", "emailSent"]
        _upload(store, [["a@corp.com", "SN1", "false"]], header=header)

        _upload(store, [["a@corp.com", "SN2", "true"]], header=header)

        assert store.find_by_email("a@corp.com")["email_sent"] is False

    def test_form_opened_normalized(self, store):
        header = ["internetEmail", "serialNumber", "formOpened"]

        _upload(store, [["a@corp.com", "SN1", "y"], ["a@corp.com", "SN2", "maybe"]], header=header)

        assets = store.find_by_email("a@corp.com")["assets"]
        assert [a["form_opened"] for a in assets] == ["Yes", None]


class TestManagerEmail:

    def test_manager_email_taken_from_first_asset_with_one(self, store):
        _upload(store, [
            _row(serial="SN1", manager=""),
            _row(serial="SN2", manager="Boss@Corp.com"),
        ])

        assert store.find_by_email("jane.doe@corp.com")["manager_email"] == "boss@corp.com"

    def test_missing_manager_email_filled_on_merge(self, store):
        _upload(store, [_row(serial="SN1")])

        _upload(store, [_row(serial="SN2", manager="boss@corp.com")])

        assert store.find_by_email("jane.doe@corp.com")["manager_email"] == "boss@corp.com"

    def test_manager_email_filled_when_no_asset_is_new(self, store):
        _upload(store, [_row(serial="SN1")])

        summary = _upload(store, [_row(serial="SN1", manager="boss@corp.com")])

        assert summary.employees_unchanged == 1
        assert store.find_by_email("jane.doe@corp.com")["manager_email"] == "boss@corp.com"

    def test_known_manager_email_kept_on_merge(self, store):
        _upload(store, [_row(serial="SN1", manager="boss@corp.com")])

        _upload(store, [_row(serial="SN2", manager="other@corp.com")])

        assert store.find_by_email("jane.doe@corp.com")["manager_email"] == "boss@corp.com"


class TestAfterDeleteAll:

    def test_single_row_import_after_wipe(self, store):
        _upload(store, [_row(email="a@corp.com", serial="SN1"), _row(email="b@corp.com", serial="SN2")])
        store.delete_all()

        summary = _upload(store, [_row(email="a@corp.com", serial="SN1")])

        assert summary.employees_created == 1
        assert len(store.list_employees()) == 1
        employee = store.find_by_email("a@corp.com")
        assert employee["email_sent"] is False
        assert employee["form_submitted_at"] is None


class TestStaging:

    def test_stage_rows_keeps_upload_order(self):
        table = read_table(make_csv([
            ASSET_HEADER,
            _row(email="b@corp.com", serial="SN1"),
            _row(email="a@corp.com", serial="SN2"),
        ]), "assets.csv")

        staged, duplicates = stage_rows(validate_table(table))

        assert list(staged) == ["b@corp.com", "a@corp.com"]
        assert duplicates == 0

    def test_import_table_accepts_parsed_table(self, store):
        table = read_table(make_csv([ASSET_HEADER, _row()]), "assets.csv")

        summary = import_table(store, table)

        assert summary.employees_created == 1
