import uuid

import pytest

MONTHLY_100 = {"category": "Tuition", "label": "Tuition", "amount": "100.00", "frequency": "MONTHLY"}


@pytest.fixture
def enrolled(factory):
    klass = factory.class_()
    student = factory.student(klass)
    return klass, student


def create_structure(client, klass, items=None, name="Standard"):
    response = client.post("/api/fee-structures/", json={
        "class_id": str(klass.id),
        "academic_year": "2024",
        "name": name,
        "effective_from": "2024-01-01",
        "items": items or [MONTHLY_100],
    })
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"]["status"] == "healthy"


def test_compute_and_read_month(client, enrolled):
    klass, student = enrolled
    structure = create_structure(client, klass)
    assert structure["latest_version"] == 1
    assert structure["total_annual"] == "1200.00"

    response = client.post("/api/fee-history/compute", json={"month": "2024-03"})
    assert response.status_code == 200
    assert response.json() == {
        "count": 1, "students_evaluated": 1, "skipped_no_structure": 0, "unchanged": 0, "failed": 0,
    }

    again = client.post("/api/fee-history/compute", json={"month": "2024-03"}).json()
    assert again["count"] == 0
    assert again["unchanged"] == 1

    month = client.get(f"/api/fee-history/students/{student.id}/months/2024-03").json()
    assert month["month"] == "2024-03"
    assert month["current"]["version"] == 1
    assert month["current"]["final_payable"] == "100.00"
    assert month["current"]["breakdown"]["totals"]["base"] == "100.00"
    assert len(month["versions"]) == 1


def test_compute_rejects_bad_month(client, enrolled):
    response = client.post("/api/fee-history/compute", json={"month": "March 2024"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_ARGUMENT"


def test_compute_for_unknown_class(client):
    response = client.post("/api/fee-history/compute", json={"month": "2024-03", "class_id": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


def test_history_and_bulk(client, enrolled):
    klass, student = enrolled
    create_structure(client, klass)
    for month in ("2024-01", "2024-02"):
        client.post("/api/fee-history/compute", json={"month": month})

    history = client.get(f"/api/fee-history/students/{student.id}", params={"page_size": 1}).json()
    assert history["pagination"]["total_count"] == 2
    assert history["pagination"]["has_next"] is True
    assert history["history"][0]["period_month"] == "2024-02-01"

    bulk = client.get("/api/fee-history/bulk", params={"month": "2024-02", "class_id": str(klass.id)}).json()
    assert bulk["summary"]["total_students"] == 1
    assert bulk["summary"]["total_final_payable"] == "100.00"


def test_history_for_unknown_student(client):
    response = client.get(f"/api/fee-history/students/{uuid.uuid4()}")
    assert response.status_code == 404


def test_structure_revision_versions_and_timeline(client, enrolled):
    klass, _ = enrolled
    structure = create_structure(client, klass)

    revision = client.post(f"/api/fee-structures/{structure['id']}/revisions", json={
        "effective_from": "2024-05-01",
        "items": [{"label": "Tuition", "amount": "150.00", "frequency": "MONTHLY"}],
        "change_reason": "Annual review",
    })
    assert revision.status_code == 201
    assert revision.json()["version"] == 2

    backwards = client.post(f"/api/fee-structures/{structure['id']}/revisions", json={
        "effective_from": "2024-02-01",
        "items": [MONTHLY_100],
    })
    assert backwards.status_code == 400

    versions = client.get(f"/api/fee-structures/{structure['id']}/versions").json()
    assert [v["version"] for v in versions] == [1, 2]

    timeline = client.get(f"/api/fee-structures/{structure['id']}/timeline").json()
    assert timeline["current_version"] == 2
    assert timeline["versions"][1]["change_from_previous"]["monthly_change"] == "50.00"

    archived = client.put(f"/api/fee-structures/{structure['id']}/status", json={"status": "ARCHIVED"})
    assert archived.json()["status"] == "ARCHIVED"


def test_duplicate_structure_is_conflict(client, enrolled):
    klass, _ = enrolled
    create_structure(client, klass)

    response = client.post("/api/fee-structures/", json={
        "class_id": str(klass.id),
        "academic_year": "2024",
        "name": "Standard",
        "effective_from": "2024-01-01",
        "items": [MONTHLY_100],
    })

    assert response.status_code == 409


def test_float_amounts_are_rejected(client, enrolled):
    klass, _ = enrolled
    response = client.post("/api/fee-structures/", json={
        "class_id": str(klass.id),
        "academic_year": "2024",
        "name": "Standard",
        "effective_from": "2024-01-01",
        "items": [{"label": "Tuition", "amount": 100.5, "frequency": "MONTHLY"}],
    })

    assert response.status_code == 422


def test_out_of_range_amounts_are_rejected(client, enrolled):
    klass, _ = enrolled
    structure = client.post("/api/fee-structures/", json={
        "class_id": str(klass.id),
        "academic_year": "2024",
        "name": "Standard",
        "effective_from": "2024-01-01",
        "items": [{"label": "Bus", "amount": "1e30", "frequency": "MONTHLY"}],
    })
    charge = client.post("/api/charges/", json={"name": "Damage", "type": "FINE", "value": "1e30"})

    assert structure.status_code == 422
    assert charge.status_code == 422


def test_scholarship_lifecycle(client, enrolled):
    klass, student = enrolled
    create_structure(client, klass, items=[{"label": "Tuition", "amount": "1000.00", "frequency": "MONTHLY"}])

    scholarship = client.post("/api/scholarships/", json={
        "name": "Merit award", "type": "MERIT", "value_type": "PERCENTAGE", "value": "10.00",
    })
    assert scholarship.status_code == 201

    assignment = client.post("/api/scholarships/assignments", json={
        "scholarship_id": scholarship.json()["id"],
        "student_id": str(student.id),
        "effective_from": "2024-01-01",
    })
    assert assignment.status_code == 201
    assert assignment.json()["scholarship"]["name"] == "Merit award"

    client.post("/api/fee-history/compute", json={"month": "2024-03"})
    month = client.get(f"/api/fee-history/students/{student.id}/months/2024-03").json()
    assert month["current"]["scholarship_amount"] == "100.00"

    listed = client.get(f"/api/scholarships/students/{student.id}").json()
    assert len(listed) == 1

    removed = client.delete(f"/api/scholarships/assignments/{assignment.json()['id']}")
    assert removed.status_code == 204
    assert client.get(f"/api/scholarships/students/{student.id}").json() == []

    client.post("/api/fee-history/compute", json={"month": "2024-03"})
    month = client.get(f"/api/fee-history/students/{student.id}/months/2024-03").json()
    assert month["current"]["version"] == 2
    assert month["current"]["scholarship_amount"] == "0.00"


def test_charge_lifecycle(client, enrolled, factory):
    klass, student = enrolled
    other = factory.student(klass)

    charge = client.post("/api/charges/", json={"name": "Lost book", "type": "FINE", "value": "12.50"})
    assert charge.status_code == 201
    charge_id = charge.json()["id"]

    applied = client.post("/api/charges/assignments", json={
        "charge_id": charge_id, "student_id": str(student.id), "applied_month": "2024-03",
    })
    assert applied.status_code == 201
    assert applied.json()["amount"] == "12.50"

    duplicate = client.post("/api/charges/assignments", json={
        "charge_id": charge_id, "student_id": str(student.id), "applied_month": "2024-03",
    })
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    bulk = client.post(f"/api/charges/{charge_id}/bulk-apply", json={
        "student_ids": [str(student.id), str(other.id)], "applied_month": "2024-03",
    }).json()
    assert bulk["success_count"] == 1
    assert bulk["error_count"] == 1

    listed = client.get(f"/api/charges/students/{student.id}", params={"month": "2024-03"}).json()
    assert len(listed) == 1

    removed = client.delete(f"/api/charges/assignments/{applied.json()['id']}")
    assert removed.status_code == 204
    assert client.delete(f"/api/charges/assignments/{applied.json()['id']}").status_code == 404
