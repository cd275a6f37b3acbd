"""Unit tests for the HTTP clients of the upstream services."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from meter_cycles.services.errors import (
    ExportFailedError,
    NotFoundError,
    UpstreamUnavailableError,
)
from meter_cycles.services.invoice_export import InvoiceExportClient
from meter_cycles.services.meter_registry import MeterRegistryClient, parse_upstream_date
from meter_cycles.services.unit_directory import UnitDirectoryClient

BASE_URL = "http://upstream.test"


def mock_client(handler) -> httpx.Client:
    return httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))


class TestUnitDirectoryClient:
    """Tests for UnitDirectoryClient."""

    def test_list_buildings(self):
        def handler(request):
            assert request.url.path == "/api/buildings"
            return httpx.Response(200, json=[{"id": 7, "code": "BLD-7", "name": "North"}])

        buildings = UnitDirectoryClient(BASE_URL, client=mock_client(handler)).list_buildings()

        assert buildings[0].id == "7"
        assert buildings[0].code == "BLD-7"

    def test_list_units_paged_response(self):
        def handler(request):
            assert request.url.path == "/api/units/building/7"
            return httpx.Response(
                200,
                json={
                    "items": [
                        {"id": 1, "code": "A-1", "floor": "1", "status": "ACTIVE"},
                        {"id": 2, "code": "A-2", "floor": 1, "status": "INACTIVE", "buildingId": 7},
                    ]
                },
            )

        units = UnitDirectoryClient(BASE_URL, client=mock_client(handler)).list_units("7")

        assert [(u.id, u.floor, u.building_id) for u in units] == [("1", 1, "7"), ("2", 1, "7")]
        assert units[0].is_billable()
        assert not units[1].is_billable()

    def test_unknown_building(self):
        client = UnitDirectoryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(404, json={}))
        )
        with pytest.raises(NotFoundError):
            client.list_units("99")

    def test_server_error_is_unavailable(self):
        client = UnitDirectoryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(500, text="boom"))
        )
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            client.list_buildings()
        assert exc_info.value.http_status == 503

    def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = UnitDirectoryClient(BASE_URL, client=mock_client(handler))
        with pytest.raises(UpstreamUnavailableError, match="unit-directory unavailable"):
            client.list_buildings()


class TestMeterRegistryClient:
    """Tests for MeterRegistryClient."""

    def test_list_meters_sends_filters(self):
        def handler(request):
            assert request.url.path == "/api/meters"
            assert request.url.params["buildingId"] == "B1"
            assert request.url.params["serviceId"] == "WATER"
            return httpx.Response(
                200,
                json=[
                    {"id": "m1", "unitId": "u1", "lastReadingDate": "2025-01-14T08:30:00"},
                    {"id": "m2", "unitId": "u2", "active": False},
                ],
            )

        meters = MeterRegistryClient(BASE_URL, client=mock_client(handler)).list_meters("B1", "WATER")

        assert meters[0].last_reading_date == date(2025, 1, 14)
        assert meters[1].active is False
        assert meters[1].last_reading_date is None

    def test_list_readings(self):
        def handler(request):
            assert request.url.params["from"] == "2025-01-01"
            assert request.url.params["to"] == "2025-01-31"
            return httpx.Response(
                200,
                json={"content": [{"id": 5, "meterId": "m1", "readingDate": "2025-01-03", "currIndex": 12.5}]},
            )

        readings = MeterRegistryClient(BASE_URL, client=mock_client(handler)).list_readings(
            "B1", "WATER", date(2025, 1, 1), date(2025, 1, 31)
        )

        assert readings[0].meter_id == "m1"
        assert readings[0].current_index == Decimal("12.5")

    def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = MeterRegistryClient(BASE_URL, client=mock_client(handler))
        with pytest.raises(UpstreamUnavailableError, match="meter-registry"):
            client.list_meters("B1", "WATER")

    def test_invalid_json(self):
        client = MeterRegistryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, text="<html>"))
        )
        with pytest.raises(UpstreamUnavailableError, match="invalid JSON"):
            client.list_meters("B1", "WATER")

    def test_parse_upstream_date(self):
        assert parse_upstream_date(None) is None
        assert parse_upstream_date("") is None
        assert parse_upstream_date("2025-01-31") == date(2025, 1, 31)


class TestInvoiceExportClient:
    """Tests for InvoiceExportClient."""

    def test_export_summary(self):
        def handler(request):
            assert request.method == "POST"
            assert request.url.path == "/api/meter-readings/export/cycle/3"
            return httpx.Response(
                200,
                json={"totalReadings": 10, "invoicesCreated": 9, "invoicesSkipped": 1, "invoiceIds": [1, 2]},
            )

        summary = InvoiceExportClient(BASE_URL, client=mock_client(handler)).export(3)

        assert summary.total_readings == 10
        assert summary.invoices_created == 9
        assert summary.invoice_ids == ["1", "2"]
        assert summary.errors == []

    def test_rejection_is_export_failed(self):
        def handler(request):
            return httpx.Response(409, content=json.dumps({"message": "already invoiced"}))

        with pytest.raises(ExportFailedError) as exc_info:
            InvoiceExportClient(BASE_URL, client=mock_client(handler)).export(3)

        assert exc_info.value.details == {"cycle_id": 3, "upstream_status": 409}
        assert "already invoiced" in exc_info.value.message

    def test_malformed_summary(self):
        client = InvoiceExportClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json={"ok": True}))
        )
        with pytest.raises(ExportFailedError, match="malformed export summary"):
            client.export(3)

    def test_timeout_is_unavailable_not_failed(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(UpstreamUnavailableError):
            InvoiceExportClient(BASE_URL, client=mock_client(handler)).export(3)

    def test_context_manager_closes_client(self):
        http_client = mock_client(lambda request: httpx.Response(200, json=[]))
        with InvoiceExportClient(BASE_URL, client=http_client) as client:
            assert client.base_url == BASE_URL
        assert http_client.is_closed


class TestMalformedRecords:
    """A bad record from an upstream fails the call as 'service unavailable'."""

    def test_meter_without_unit(self):
        client = MeterRegistryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json=[{"id": "M1"}]))
        )
        with pytest.raises(UpstreamUnavailableError, match="malformed meter") as exc_info:
            client.list_meters("B1", "WATER")
        assert exc_info.value.details == {"service": "meter-registry"}

    @pytest.mark.parametrize(
        "reading",
        [
            {"id": 1, "meterId": "m1", "readingDate": "31/01/2025"},
            {"id": 1, "meterId": "m1", "readingDate": ""},
            {"id": 1, "meterId": "m1", "readingDate": "2025-01-03", "currIndex": "n/a"},
            "2025-01-03",
        ],
    )
    def test_bad_reading(self, reading):
        client = MeterRegistryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json=[reading]))
        )
        with pytest.raises(UpstreamUnavailableError, match="malformed meter reading"):
            client.list_readings("B1", "WATER", date(2025, 1, 1), date(2025, 1, 31))

    def test_unit_with_bad_floor(self):
        units = [{"id": 1, "code": "A-1", "floor": "ground"}]
        client = UnitDirectoryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json=units))
        )
        with pytest.raises(UpstreamUnavailableError, match="malformed unit"):
            client.list_units("7")

    def test_building_without_id(self):
        client = UnitDirectoryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json=[{"code": "X"}]))
        )
        with pytest.raises(UpstreamUnavailableError, match="malformed building"):
            client.list_buildings()

    def test_unexpected_listing_shape(self):
        client = UnitDirectoryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json={"units": []}))
        )
        with pytest.raises(UpstreamUnavailableError, match="unexpected listing format"):
            client.list_units("7")

    def test_unit_owner_fields(self):
        units = [
            {"id": 1, "floor": 1, "ownerName": "T. Nguyen"},
            {"id": 2, "floor": 1, "primaryResidentId": 44},
            {"id": 3, "floor": 1},
        ]
        client = UnitDirectoryClient(
            BASE_URL, client=mock_client(lambda request: httpx.Response(200, json=units))
        )

        owned = [unit.has_owner for unit in client.list_units("7")]

        assert owned == [True, True, False]


class TestPagedListings:
    """Paged listings are read to the last page."""

    @staticmethod
    def paged_units(request):
        page = int(request.url.params.get("page", 0))
        units = [{"id": f"U{page}{n}", "floor": page} for n in range(2)]
        return httpx.Response(200, json={"content": units, "totalPages": 2, "number": page})

    def test_units_follow_total_pages(self):
        client = UnitDirectoryClient(BASE_URL, client=mock_client(self.paged_units))

        units = client.list_units("7")

        assert [unit.id for unit in units] == ["U00", "U01", "U10", "U11"]

    def test_readings_follow_last_flag_and_keep_filters(self):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            page = int(request.url.params.get("page", 0))
            return httpx.Response(
                200,
                json={
                    "content": [{"id": page, "meterId": "m1", "readingDate": "2025-01-03"}],
                    "last": page == 2,
                },
            )

        readings = MeterRegistryClient(BASE_URL, client=mock_client(handler)).list_readings(
            "B1", "WATER", date(2025, 1, 1), date(2025, 1, 31)
        )

        assert [r.id for r in readings] == ["0", "1", "2"]
        assert [params.get("page") for params in seen] == [None, "1", "2"]
        assert all(params["buildingId"] == "B1" for params in seen)

    def test_empty_follow_up_page_is_unavailable(self):
        def handler(request):
            if "page" in request.url.params:
                return httpx.Response(200, json={"content": [], "totalPages": 3})
            return httpx.Response(200, json={"content": [{"id": "m1", "unitId": "u1"}], "totalPages": 3})

        client = MeterRegistryClient(BASE_URL, client=mock_client(handler))
        with pytest.raises(UpstreamUnavailableError, match="page 1"):
            client.list_meters("B1", "WATER")

    def test_single_page_needs_one_request(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(200, json={"items": [{"id": 1}], "totalPages": 1})

        buildings = UnitDirectoryClient(BASE_URL, client=mock_client(handler)).list_buildings()

        assert [b.id for b in buildings] == ["1"]
        assert len(calls) == 1
