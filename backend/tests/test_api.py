"""HTTP API tests — tray documents and scans end to end."""

import pytest
from httpx import AsyncClient

from traytrack.middleware.exceptions import RetryableConflictError, SequenceExhaustedError
from traytrack.services import scan_lifecycle


async def _create_tray(client: AsyncClient, admin_headers, part="P1", machine="M1") -> dict:
    resp = await client.post("/api/trays", headers=admin_headers, json={
        "part_number": part,
        "machine_id": machine,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def _master(qty, part="P2"):
    return {"transfer_reason_code": 1, "qty": qty, "out_part_no": part}


@pytest.mark.api
@pytest.mark.asyncio
class TestTrayEndpoints:

    async def test_create_tray(self, client: AsyncClient, admin_headers):
        data = await _create_tray(client, admin_headers)
        tray = data["tray_document"]
        assert tray["id"].startswith("TK")
        assert tray["status"] == "not_started"
        assert tray["origin_station_id"] == "STA001"
        assert tray["current_lot_number"] == data["root_lot"]["lot_number"]
        assert data["root_lot"]["scan_record_id"] is None

    async def test_create_requires_admin(self, client: AsyncClient, operator_headers):
        resp = await client.post("/api/trays", headers=operator_headers("STA001"), json={
            "part_number": "P1",
            "machine_id": "M1",
        })
        assert resp.status_code == 403

    async def test_create_unknown_part(self, client: AsyncClient, admin_headers):
        resp = await client.post("/api/trays", headers=admin_headers, json={
            "part_number": "NOPE",
            "machine_id": "M1",
        })
        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "REFERENCE_NOT_FOUND"
        assert error["details"]["identifier"] == "NOPE"

    async def test_missing_token(self, client: AsyncClient):
        resp = await client.get("/api/trays")
        assert resp.status_code == 401

    async def test_list_and_filter(self, client: AsyncClient, admin_headers, operator_headers):
        first = (await _create_tray(client, admin_headers))["tray_document"]
        await _create_tray(client, admin_headers)
        await client.post("/api/scans/start", headers=operator_headers("STA001"), json={
            "tray_document_id": first["id"],
            "machine_id": "M1",
        })

        resp = await client.get("/api/trays", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["total"] == 2

        resp = await client.get(
            "/api/trays", headers=admin_headers, params={"status": "in_progress"}
        )
        page = resp.json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == first["id"]

    async def test_unknown_tray(self, client: AsyncClient, admin_headers):
        resp = await client.get("/api/trays/TK0000000000", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["details"]["resource"] == "TrayDocument"


@pytest.mark.api
@pytest.mark.asyncio
class TestScanEndpoints:

    async def test_start_finish_and_read_back(
        self, client: AsyncClient, admin_headers, operator_headers
    ):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        headers = operator_headers("STA001")

        resp = await client.post("/api/scans/start", headers=headers, json={
            "tray_document_id": tray["id"],
            "machine_id": "M1",
        })
        assert resp.status_code == 201, resp.text
        scan = resp.json()
        assert scan["operator_id"] == "operator-1"
        assert scan["station_id"] == "STA001"
        assert scan["finished_at"] is None

        resp = await client.get(f"/api/scans/active/{tray['id']}", headers=headers)
        assert resp.json()["id"] == scan["id"]

        resp = await client.post(f"/api/scans/{scan['id']}/finish", headers=headers, json={
            "good_qty": 48,
            "scrap_qty": 2,
            "transform_groups": [_master(48)],
        })
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["scan"]["result"] == "OK, NG"
        assert body["scan"]["total_qty"] == 50
        assert body["tray_document"]["status"] == "partial_done"
        assert len(body["minted_lots"]) == 1
        assert body["transfers"][0]["from_lot_number"] == tray["current_lot_number"]

        resp = await client.get(f"/api/scans/{scan['id']}", headers=headers)
        assert resp.json()["finished_by"] == "operator-1"

        resp = await client.get(f"/api/scans/active/{tray['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.json() is None

        resp = await client.get(f"/api/trays/{tray['id']}/lineage", headers=headers)
        lineage = resp.json()
        assert len(lineage["lots"]) == 2
        assert len(lineage["transfers"]) == 1

    async def test_second_start_conflict(
        self, client: AsyncClient, admin_headers, operator_headers
    ):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        payload = {"tray_document_id": tray["id"], "machine_id": "M1"}
        first = await client.post("/api/scans/start", headers=operator_headers("STA001"), json=payload)

        resp = await client.post("/api/scans/start", headers=operator_headers("STA001"), json=payload)
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "ACTIVE_SCAN_CONFLICT"
        assert error["retryable"] is False
        assert error["details"]["scan_record_id"] == first.json()["id"]

    async def test_backward_movement_suggests_next_station(
        self, client: AsyncClient, admin_headers, operator_headers
    ):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        start = await client.post("/api/scans/start", headers=operator_headers("STA002"), json={
            "tray_document_id": tray["id"], "machine_id": "M2",
        })
        await client.post(f"/api/scans/{start.json()['id']}/finish", headers=operator_headers("STA002"), json={
            "good_qty": 10, "transform_groups": [_master(10)],
        })

        resp = await client.post("/api/scans/start", headers=operator_headers("STA001"), json={
            "tray_document_id": tray["id"], "machine_id": "M1",
        })
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "BACKWARD_MOVEMENT_REJECTED"
        assert error["details"]["next_station"]["id"] == "STA003"

    async def test_machine_of_other_station(
        self, client: AsyncClient, admin_headers, operator_headers
    ):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        resp = await client.post("/api/scans/start", headers=operator_headers("STA001"), json={
            "tray_document_id": tray["id"], "machine_id": "M3",
        })
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "MACHINE_STATION_MISMATCH"

    async def test_desktop_client_cannot_start(
        self, client: AsyncClient, admin_headers, operator_headers
    ):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        resp = await client.post(
            "/api/scans/start",
            headers=operator_headers("STA001", client_type="PC"),
            json={"tray_document_id": tray["id"], "machine_id": "M1"},
        )
        assert resp.status_code == 403

    async def test_manager_cannot_start(self, client: AsyncClient, admin_headers, manager_headers):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        resp = await client.post(
            "/api/scans/start",
            headers=manager_headers,
            json={"tray_document_id": tray["id"], "machine_id": "M1"},
        )
        assert resp.status_code == 403

    async def test_finish_body_validation(self, client: AsyncClient, operator_headers):
        resp = await client.post("/api/scans/SC0000000000/finish", headers=operator_headers("STA001"), json={
            "good_qty": 0,
            "scrap_qty": 0,
        })
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["scan_record_id"] == "SC0000000000"
        assert error["details"]["errors"]

    async def test_unknown_output_part_names_scan_and_tray(
        self, client: AsyncClient, admin_headers, operator_headers
    ):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        headers = operator_headers("STA001")
        start = await client.post("/api/scans/start", headers=headers, json={
            "tray_document_id": tray["id"], "machine_id": "M1",
        })
        scan_id = start.json()["id"]

        resp = await client.post(f"/api/scans/{scan_id}/finish", headers=headers, json={
            "good_qty": 10, "transform_groups": [_master(10, part="NOPE")],
        })
        assert resp.status_code == 404
        details = resp.json()["error"]["details"]
        assert details["identifier"] == "NOPE"
        assert details["scan_record_id"] == scan_id
        assert details["tray_document_id"] == tray["id"]

    async def test_quantity_mismatch(self, client: AsyncClient, admin_headers, operator_headers):
        tray = (await _create_tray(client, admin_headers))["tray_document"]
        headers = operator_headers("STA001")
        start = await client.post("/api/scans/start", headers=headers, json={
            "tray_document_id": tray["id"], "machine_id": "M1",
        })
        resp = await client.post(f"/api/scans/{start.json()['id']}/finish", headers=headers, json={
            "good_qty": 10, "transform_groups": [_master(9)],
        })
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "QUANTITY_MISMATCH"
        assert error["details"]["tray_document_id"] == tray["id"]

    async def test_active_scans_listing(self, client: AsyncClient, admin_headers, operator_headers):
        for _ in range(2):
            tray = (await _create_tray(client, admin_headers))["tray_document"]
            await client.post("/api/scans/start", headers=operator_headers("STA001"), json={
                "tray_document_id": tray["id"], "machine_id": "M1",
            })

        resp = await client.get("/api/scans/active", headers=admin_headers)
        assert resp.status_code == 200
        assert len(resp.json()) == 2

        resp = await client.get("/api/scans/active", headers=admin_headers, params={"limit": 500})
        assert resp.status_code == 422


@pytest.mark.api
@pytest.mark.asyncio
class TestErrorResponses:

    async def test_retryable_conflict(
        self, client: AsyncClient, admin_headers, operator_headers, monkeypatch
    ):
        async def conflicted(*args, **kwargs):
            raise RetryableConflictError(sqlstate="40001")

        monkeypatch.setattr(scan_lifecycle, "start_scan", conflicted)
        resp = await client.post("/api/scans/start", headers=operator_headers("STA001"), json={
            "tray_document_id": "TK0000000000", "machine_id": "M1",
        })
        assert resp.status_code == 409
        assert resp.headers["Retry-After"] == "1"
        error = resp.json()["error"]
        assert error["code"] == "RETRYABLE_CONFLICT"
        assert error["retryable"] is True

    async def test_fatal_error_is_generic_500(
        self, client: AsyncClient, admin_headers, monkeypatch
    ):
        from traytrack.services import tray_documents

        async def exhausted(*args, **kwargs):
            raise SequenceExhaustedError("tray_document", "TK260209", 4)

        monkeypatch.setattr(tray_documents, "create_tray_document", exhausted)
        resp = await client.post("/api/trays", headers=admin_headers, json={
            "part_number": "P1", "machine_id": "M1",
        })
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "FATAL"


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
