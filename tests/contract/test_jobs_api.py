"""Contract tests for the office jobs API."""

PENALTY_JOB = {"type": "penalty.apply", "payload": {"as_of": "2025-02-10", "rate": "0.365"}}


class TestJobsApi:
    """Test enqueue, inspect, list and retry endpoints."""

    def test_create_job(self, client, staff):
        response = client.post("/api/jobs", json=PENALTY_JOB, headers=staff)

        assert response.status_code == 202
        job = response.json()
        assert job["type"] == "penalty.apply"
        assert job["status"] == "queued"
        assert job["progress"] == 0
        assert job["attempts"] == 0
        assert job["max_attempts"] == 3
        assert job["actor_id"] == "acc-1"
        assert job["payload"]["as_of"] == "2025-02-10"

    def test_get_job(self, client, staff):
        job_id = client.post("/api/jobs", json=PENALTY_JOB, headers=staff).json()["id"]

        response = client.get(f"/api/jobs/{job_id}")

        assert response.status_code == 200
        assert response.json()["id"] == job_id

    def test_invalid_payload(self, client, staff):
        response = client.post(
            "/api/jobs", json={"type": "penalty.apply", "payload": {"rate": "0.1"}}, headers=staff
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"
        assert client.get("/api/jobs").json() == []

    def test_unknown_type(self, client, staff):
        response = client.post("/api/jobs", json={"type": "reports.everything"}, headers=staff)

        assert response.status_code == 400

    def test_list_by_status(self, client, staff):
        client.post("/api/jobs", json=PENALTY_JOB, headers=staff)

        assert len(client.get("/api/jobs", params={"status": "queued"}).json()) == 1
        assert client.get("/api/jobs", params={"status": "failed"}).json() == []

    def test_retry_of_queued_job(self, client, staff):
        job_id = client.post("/api/jobs", json=PENALTY_JOB, headers=staff).json()["id"]

        response = client.post(f"/api/jobs/{job_id}/retry", headers=staff)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_transition"

    def test_missing_job(self, client):
        response = client.get("/api/jobs/404")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_enqueue_needs_staff_role(self, client):
        response = client.post("/api/jobs", json=PENALTY_JOB)

        assert response.status_code == 403
