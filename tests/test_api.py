import pytest


def login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})


@pytest.fixture
def student_client(app, container):
    container.user_service.provision_student(
        email="ana@example.com", password="dance123", profile={"first_name": "Ana", "last_name": "Lopez"}
    )
    client = app.test_client()
    assert login(client, "ana@example.com", "dance123").status_code == 200
    return client


def test_login_and_me(admin_client):
    resp = admin_client.get("/api/auth/me")
    assert resp.status_code == 200
    assert resp.get_json()["user"]["role"] == "admin"


def test_bad_login_is_unauthorized(client, container):
    container.user_service.create_admin(email="admin@example.com", password="secret123")
    resp = login(client, "admin@example.com", "nope")
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False


def test_routes_require_a_session(client):
    resp = client.get("/api/students")
    assert resp.status_code == 401
    assert resp.get_json()["error"]["message"] == "Please sign in to continue"


def test_students_cannot_use_admin_routes(student_client):
    resp = student_client.get("/api/students")
    assert resp.status_code == 403
    assert resp.get_json()["error"]["kind"] == "PermissionDenied"


def test_students_read_only_their_own_ledger(student_client, container, enroll):
    own_id = container.student_directory.list_all()[0].student_id
    enroll("other")

    assert student_client.get(f"/api/reports/students/{own_id}/ledger").status_code == 200
    assert student_client.get("/api/reports/students/other/ledger").status_code == 403


def test_create_and_filter_students(admin_client):
    resp = admin_client.post("/api/students", json={"first_name": "Bo", "last_name": "Chen"})
    assert resp.status_code == 201
    assert resp.get_json()["student"]["enrollment_status"] == "Pending"

    listed = admin_client.get("/api/students?status=Pending").get_json()["students"]
    assert [s["full_name"] for s in listed] == ["Bo Chen"]
    assert admin_client.get("/api/students?status=Graduated").status_code == 400


def test_mark_attendance(admin_client, enroll):
    enroll("a")
    resp = admin_client.post("/api/attendance/mark", json={"date": "2025-05-01", "student_id": "a", "status": "absent"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["new_balance"] == "5.00"
    assert body["record"]["fee_charged"] == "5.00"


def test_mark_with_bad_date_is_rejected(admin_client, enroll):
    enroll("a")
    resp = admin_client.post("/api/attendance/mark", json={"date": "2025-13-01", "student_id": "a", "status": "absent"})
    assert resp.status_code == 400
    assert resp.get_json()["error"]["kind"] == "ValidationFailed"


def test_bulk_mark_reports_partial_success(admin_client, enroll):
    enroll("a")
    resp = admin_client.post(
        "/api/attendance/bulk", json={"date": "2025-05-01", "student_ids": ["a", "ghost"], "status": "present"}
    )
    body = resp.get_json()
    assert resp.status_code == 207
    assert body["success"] is False
    assert body["succeeded"] == ["a"]
    assert [f["student_id"] for f in body["failed"]] == ["ghost"]


def test_holiday_needs_confirmation(admin_client, container, enroll):
    enroll("a")
    admin_client.post("/api/attendance/mark", json={"date": "2025-05-01", "student_id": "a", "status": "absent"})

    resp = admin_client.post("/api/holidays", json={"date": "2025-05-01", "name": "Founders Day"})
    assert resp.status_code == 409
    assert resp.get_json()["error"]["kind"] == "UnconfirmedHolidayChange"
    assert container.student_directory.get("a").balance == 5


def test_holiday_apply_and_revert(admin_client, container, enroll):
    enroll("a")
    admin_client.post("/api/attendance/mark", json={"date": "2025-05-01", "student_id": "a", "status": "absent"})

    resp = admin_client.get("/api/holidays/2025-05-01/warning", query_string={"name": "Founders Day"})
    assert resp.get_json()["warning"]["has_impact"] is True

    resp = admin_client.post("/api/holidays", json={"date": "2025-05-01", "name": "Founders Day", "confirmed": True})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["holiday_added"] is True
    assert body["total_credits_issued"] == "5.00"
    assert container.student_directory.get("a").balance == 0

    resp = admin_client.post("/api/holidays/2025-05-01/revert", json={"confirmed": True})
    assert resp.status_code == 200
    assert resp.get_json()["attendance_reverted"] == 1
    assert container.student_directory.get("a").balance == 5


def test_holiday_impact_rejects_bad_date(admin_client):
    resp = admin_client.get("/api/holidays/not-a-date/impact")
    assert resp.status_code == 400


def test_record_payment_and_list(admin_client, enroll):
    enroll("a", "Ana")
    resp = admin_client.post(
        "/api/payments", json={"student_id": "a", "amount": "2.50", "date": "2025-05-03", "payment_method": "cash"}
    )
    assert resp.status_code == 201
    payment = resp.get_json()["payment"]
    assert payment["amount"] == "2.50"

    fetched = admin_client.get(f"/api/payments/{payment['id']}").get_json()["payment"]
    assert fetched["student_id"] == "a"
    assert admin_client.get("/api/payments/missing").status_code == 404
    assert admin_client.get("/api/students/a").get_json()["student"]["balance"] == "-2.50"


def test_payment_validation_error(admin_client, enroll):
    enroll("a")
    resp = admin_client.post("/api/payments", json={"student_id": "a", "amount": "-1", "date": "2025-05-03"})
    assert resp.status_code == 400


def test_audit_listing(admin_client, enroll):
    enroll("a")
    admin_client.post("/api/attendance/mark", json={"date": "2025-05-01", "student_id": "a", "status": "absent"})

    body = admin_client.get("/api/audit?entity_id=a").get_json()
    assert body["success"] is True
    assert [e["type"] for e in body["items"]] == ["FEE_CHANGE"]
    assert admin_client.get("/api/audit?type=ATTENDANCE_CHANGE").get_json()["total"] == 1
    assert admin_client.get("/api/audit?page=0").status_code == 400


def test_monthly_report_endpoint(admin_client, enroll):
    enroll("a")
    admin_client.post("/api/attendance/mark", json={"date": "2025-05-01", "student_id": "a", "status": "absent"})
    report = admin_client.get("/api/reports/monthly?month=5&year=2025").get_json()["report"]
    assert report["summary"]["total_fees_charged"] == "5.00"
    assert admin_client.get("/api/reports/monthly?month=abc").status_code == 400
