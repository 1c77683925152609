from helpers import SUPERVISOR_HEADERS, TECH_HEADERS


JOBS = "/api/v1/jobs"


async def create_job(client, **overrides):
    body = {"category": "phone", "pallet_id": "P1BBY", "manufacturer": "Acme", **overrides}
    response = await client.post(JOBS, json=body, headers=TECH_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


async def advance_to(client, qlid, target):
    response = await client.post(
        f"{JOBS}/{qlid}/assign",
        json={"technician_id": "tech-7", "expected_state": "QUEUED"},
        headers=SUPERVISOR_HEADERS,
    )
    job = response.json()
    while job["current_state"] != target:
        body = {"action": "ADVANCE", "expected_state": job["current_state"]}
        if job["current_state"] == "FINAL_TEST_PASSED":
            body["certification"] = {"level": "GOOD"}
        response = await client.post(
            f"{JOBS}/{qlid}/transition",
            json=body,
            headers=TECH_HEADERS,
        )
        assert response.status_code == 200, response.text
        job = response.json()
    return job


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200


async def test_create_and_fetch_job(client):
    job = await create_job(client)

    assert job["qlid"] == "QLID0000000001"
    assert job["category"] == "PHONE"
    assert job["current_state"] == "QUEUED"
    assert "ASSIGN" in job["allowed_actions"]

    response = await client.get(f"{JOBS}/P1BBY-QLID0000000001")
    assert response.status_code == 200
    assert response.json()["id"] == job["id"]

    history = (await client.get(f"{JOBS}/{job['qlid']}/history")).json()
    assert [(t["from_state"], t["action"]) for t in history] == [(None, "CREATE")]


async def test_writes_require_actor(client):
    response = await client.post(JOBS, json={"category": "PHONE"})
    assert response.status_code == 401


async def test_identifier_errors(client):
    response = await client.get(f"{JOBS}/QLID12")
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_IDENTIFIER_FORMAT"

    response = await client.get(f"{JOBS}/QLID0000000099")
    assert response.status_code == 404
    assert response.json()["code"] == "JOB_NOT_FOUND"


async def test_illegal_and_stale_transitions(client):
    job = await create_job(client)
    qlid = job["qlid"]

    response = await client.post(
        f"{JOBS}/{qlid}/transition", json={"action": "ADVANCE", "expected_state": "QUEUED"}, headers=TECH_HEADERS,
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "ILLEGAL_TRANSITION"
    assert body["current_state"] == "QUEUED"

    await advance_to(client, qlid, "IN_PROGRESS")
    response = await client.post(
        f"{JOBS}/{qlid}/transition", json={"expected_state": "ASSIGNED"}, headers=TECH_HEADERS,
    )
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "STALE_STATE"
    assert body["actual_state"] == "IN_PROGRESS"


async def test_escalate_without_expected_state(client):
    job = await create_job(client)
    response = await client.post(f"{JOBS}/{job['qlid']}/escalate", json={"reason": "odd smell"}, headers=TECH_HEADERS)

    assert response.status_code == 200
    assert response.json()["current_state"] == "ESCALATED"
    assert response.json()["resume_state"] == "QUEUED"

    response = await client.post(
        f"{JOBS}/{job['qlid']}/resolve",
        json={"target_state": "QUEUED", "expected_state": "ESCALATED"},
        headers=SUPERVISOR_HEADERS,
    )
    assert response.json()["current_state"] == "QUEUED"


async def test_override_needs_privileged_role(client):
    job = await create_job(client)
    body = {"target_state": "DIAGNOSED", "expected_state": "QUEUED", "reason": "pre-diagnosed at intake"}

    response = await client.post(f"{JOBS}/{job['qlid']}/override", json=body, headers=TECH_HEADERS)
    assert response.status_code == 403
    assert response.json()["code"] == "OVERRIDE_NOT_PERMITTED"

    response = await client.post(
        f"{JOBS}/{job['qlid']}/override", json={**body, "reason": None}, headers=SUPERVISOR_HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "OVERRIDE_REASON_REQUIRED"

    response = await client.post(f"{JOBS}/{job['qlid']}/override", json=body, headers=SUPERVISOR_HEADERS)
    assert response.status_code == 200
    assert response.json()["current_state"] == "DIAGNOSED"


async def test_step_recording(client):
    job = await create_job(client)
    await advance_to(client, job["qlid"], "IN_PROGRESS")

    response = await client.post(
        f"{JOBS}/{job['qlid']}/steps",
        json={"step_code": "data_wipe", "notes": "done", "wipe_method": "NIST-800-88"},
        headers=TECH_HEADERS,
    )
    assert response.status_code == 201
    step = response.json()
    assert step["state_code"] == "IN_PROGRESS"
    assert step["input_values"] == {"wipe_method": "NIST-800-88"}

    job = (await client.get(f"{JOBS}/{job['qlid']}")).json()
    assert job["current_step_index"] == 1

    steps = (await client.get(f"{JOBS}/{job['qlid']}/steps", params={"state_code": "IN_PROGRESS"})).json()
    assert [s["step_code"] for s in steps] == ["data_wipe"]


async def test_certification_flow(client):
    job = await create_job(client)
    await advance_to(client, job["qlid"], "FINAL_TEST_PASSED")

    response = await client.post(
        f"{JOBS}/{job['qlid']}/transition",
        json={"expected_state": "FINAL_TEST_PASSED", "certification": {"level": "excellent"}},
        headers=TECH_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["final_grade"] == "A"

    certifications = (await client.get(f"/api/v1/certifications/job/{job['qlid']}")).json()
    certification_id = certifications[0]["certification_id"]

    response = await client.get(f"/api/v1/certifications/verify/{certification_id}")
    assert response.json()["status"] == "VALID"

    report = (await client.get(f"/api/v1/certifications/{certification_id}/report")).json()
    assert report["job"]["qlid"] == job["qlid"]
    assert report["transitions"][-1]["to_state"] == "CERTIFIED"

    label = (await client.get(f"{JOBS}/{job['qlid']}/label")).json()
    assert label["scan_payload"] == f"P1BBY-{job['qlid']}"
    assert label["certification_id"] == certification_id

    response = await client.post(
        f"/api/v1/certifications/{certification_id}/revoke", json={"reason": "grading error"}, headers=SUPERVISOR_HEADERS,
    )
    assert response.status_code == 200
    response = await client.post(
        f"/api/v1/certifications/{certification_id}/revoke", json={"reason": "again"}, headers=SUPERVISOR_HEADERS,
    )
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_REVOKED"


async def test_advance_into_certified_without_level_rejected(client):
    job = await create_job(client)
    await advance_to(client, job["qlid"], "FINAL_TEST_PASSED")

    response = await client.post(
        f"{JOBS}/{job['qlid']}/transition",
        json={"expected_state": "FINAL_TEST_PASSED"},
        headers=TECH_HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "JOB_NOT_ELIGIBLE"

    job = (await client.get(f"{JOBS}/{job['qlid']}")).json()
    assert job["current_state"] == "FINAL_TEST_PASSED"
    assert job["final_grade"] is None


async def test_verify_unknown_certification(client):
    response = await client.get("/api/v1/certifications/verify/CRT-20000101-000001")
    assert response.status_code == 200
    assert response.json()["status"] == "NOT_FOUND"


async def test_diagnosis_endpoints(client):
    job = await create_job(client)
    await advance_to(client, job["qlid"], "DIAGNOSED")

    response = await client.post(
        f"/api/v1/diagnoses/job/{job['qlid']}",
        json={"defect_code": "bat-01", "severity": "major"},
        headers=TECH_HEADERS,
    )
    assert response.status_code == 201, response.text
    diagnosis = response.json()
    assert diagnosis["defect_code"] == "BAT-01"

    response = await client.post(
        f"/api/v1/diagnoses/{diagnosis['id']}/repaired",
        json={"parts_used": [{"part_number": "BAT-X1", "quantity": 1}]},
        headers=TECH_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["repair_status"] == "DONE"

    response = await client.post(
        f"/api/v1/diagnoses/{diagnosis['id']}/wont-fix", json={}, headers=TECH_HEADERS,
    )
    assert response.status_code == 409


async def test_identifier_endpoints(client):
    await create_job(client)

    preview = (await client.get("/api/v1/identifiers/qlid/preview")).json()
    assert preview == {"next_qlid": "QLID0000000002", "current_tick": 1}

    response = await client.post("/api/v1/identifiers/scan/parse", json={"payload": "P1BBY-QLIDA0000000005"})
    assert response.json() == {
        "qlid": "QLIDA0000000005", "tick": 10_000_000_005, "series": "A", "container_id": "P1BBY",
    }

    response = await client.post("/api/v1/identifiers/qlid/sync", headers=SUPERVISOR_HEADERS)
    assert response.json()["repaired"] is False


async def test_stats(client):
    await create_job(client)
    await create_job(client, category="LAPTOP", priority="HIGH")

    stats = (await client.get(f"{JOBS}/stats")).json()
    assert stats["total"] == 2
    assert stats["by_category"] == {"LAPTOP": 1, "PHONE": 1}
