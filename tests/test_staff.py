"""
Tests for /api/staff.
"""

from fastapi.testclient import TestClient

from pestcontrol.core.config import settings
from pestcontrol.core.security import verify_password
from pestcontrol.models.auth import Role, Staff

PASSWORD = "Str0ngPassw0rd"


def staff_body(company, branch=None, **overrides):
    body = {
        "name": "Ravi Kumar",
        "email": "ravi.kumar@example.com",
        "mobile": "9988776655",
        "role": "TECHNICIAN",
        "password": PASSWORD,
        "company_id": company.id,
    }
    if branch is not None:
        body["branch_id"] = branch.id
    body.update(overrides)
    return body


class TestCreateStaff:

    def test_admin_creates_technician(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, tenant.a1),
            headers=auth_headers(tenant.admin_a),
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["role"] == "TECHNICIAN"
        assert data["company_id"] == tenant.company_a.id
        assert data["branch"]["id"] == tenant.a1.id

    def test_welcome_email_failure_does_not_block_creation(self, client: TestClient, tenant, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_HOST", "")
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, tenant.a1),
            headers=auth_headers(tenant.admin_a),
        )
        assert response.status_code == 201

    def test_cannot_create_in_other_company(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_b, tenant.b1),
            headers=auth_headers(tenant.admin_a),
        )
        assert response.status_code == 403

    def test_regional_manager_cannot_create_admin(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, role="ADMIN"),
            headers=auth_headers(tenant.rm_a),
        )

        assert response.status_code == 403
        assert response.json()["message"] == "You cannot create staff with role ADMIN"

    def test_area_manager_cannot_create(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, tenant.a1),
            headers=auth_headers(tenant.am_a1),
        )
        assert response.status_code == 403

    def test_superadmin_role_is_invalid(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, role="SUPERADMIN"),
            headers=auth_headers(tenant.superadmin),
        )
        assert response.status_code == 400

    def test_weak_password(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, password="weakpassword"),
            headers=auth_headers(tenant.admin_a),
        )

        assert response.status_code == 400
        assert response.json()["errors"]

    def test_duplicate_email(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, email=tenant.tech_a1.email),
            headers=auth_headers(tenant.admin_a),
        )

        assert response.status_code == 409
        assert response.json()["message"] == "Email already registered"

    def test_branch_of_other_company(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff",
            json=staff_body(tenant.company_a, tenant.b1),
            headers=auth_headers(tenant.admin_a),
        )
        assert response.status_code == 400


class TestReadStaff:

    def test_admin_lists_company(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/staff", headers=auth_headers(tenant.admin_a))

        assert response.status_code == 200
        ids = {s["id"] for s in response.json()["data"]}
        assert ids == {tenant.admin_a.id, tenant.rm_a.id, tenant.am_a1.id, tenant.tech_a1.id, tenant.tech_a2.id}

    def test_area_manager_lists_branch(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/staff", headers=auth_headers(tenant.am_a1))

        ids = {s["id"] for s in response.json()["data"]}
        assert ids == {tenant.rm_a.id, tenant.am_a1.id, tenant.tech_a1.id}

    def test_technician_cannot_list(self, client: TestClient, tenant, auth_headers):
        assert client.get("/api/staff", headers=auth_headers(tenant.tech_a1)).status_code == 403

    def test_role_filter(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/staff?role=TECHNICIAN", headers=auth_headers(tenant.admin_a))
        assert {s["id"] for s in response.json()["data"]} == {tenant.tech_a1.id, tenant.tech_a2.id}

    def test_technician_reads_self(self, client: TestClient, tenant, auth_headers):
        response = client.get(f"/api/staff/{tenant.tech_a1.id}", headers=auth_headers(tenant.tech_a1))
        assert response.status_code == 200

    def test_technician_cannot_read_colleague(self, client: TestClient, tenant, auth_headers):
        response = client.get(f"/api/staff/{tenant.tech_a2.id}", headers=auth_headers(tenant.tech_a1))
        assert response.status_code == 403

    def test_area_manager_reads_own_branch_only(self, client: TestClient, tenant, auth_headers):
        headers = auth_headers(tenant.am_a1)
        assert client.get(f"/api/staff/{tenant.tech_a1.id}", headers=headers).status_code == 200
        assert client.get(f"/api/staff/{tenant.tech_a2.id}", headers=headers).status_code == 403

    def test_cross_company_read(self, client: TestClient, tenant, auth_headers):
        response = client.get(f"/api/staff/{tenant.tech_a1.id}", headers=auth_headers(tenant.admin_b))

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied. You can only access resources from your own company."

    def test_active_staff_list(self, client: TestClient, tenant, make_staff, auth_headers):
        make_staff(Role.TECHNICIAN, tenant.company_a, tenant.a1, is_active=False)
        response = client.get("/api/staff/list", headers=auth_headers(tenant.admin_a))

        assert response.status_code == 200
        body = response.json()
        assert {s["id"] for s in body["data"]} == {
            tenant.admin_a.id, tenant.rm_a.id, tenant.am_a1.id, tenant.tech_a1.id, tenant.tech_a2.id,
        }
        assert body["pagination"]["total_records"] == 5

    def test_active_staff_list_filters(self, client: TestClient, tenant, auth_headers):
        headers = auth_headers(tenant.superadmin)

        response = client.get(f"/api/staff/list?role=AREA_MANAGER&branch_id={tenant.b1.id}", headers=headers)
        assert [s["id"] for s in response.json()["data"]] == [tenant.am_b1.id]

        response = client.get(f"/api/staff/list?search={tenant.tech_a2.email}", headers=headers)
        assert [s["id"] for s in response.json()["data"]] == [tenant.tech_a2.id]

    def test_active_staff_list_is_admin_only(self, client: TestClient, tenant, auth_headers):
        assert client.get("/api/staff/list", headers=auth_headers(tenant.rm_a)).status_code == 403

    def test_assignable_branches(self, client: TestClient, tenant, make_branch, auth_headers):
        closed = make_branch(tenant.company_a, is_active=False)
        response = client.get("/api/staff/branches", headers=auth_headers(tenant.admin_a))

        assert response.status_code == 200
        assert {b["id"] for b in response.json()["data"]} == {tenant.a1.id, tenant.a2.id, closed.id}
        assert client.get("/api/staff/branches", headers=auth_headers(tenant.am_a1)).status_code == 403

    def test_stats(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/staff/stats/dashboard", headers=auth_headers(tenant.admin_a))

        data = response.json()["data"]
        assert data["total_staff"] == 5
        assert data["role_breakdown"]["TECHNICIAN"] == 2
        assert data["branch_breakdown"]["unassigned"] == 1


class TestUpdateStaff:

    def test_self_update_name(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/staff/{tenant.tech_a1.id}",
            json={"name": "Renamed Tech"},
            headers=auth_headers(tenant.tech_a1),
        )

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Renamed Tech"

    def test_self_cannot_change_role(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/staff/{tenant.tech_a1.id}",
            json={"role": "ADMIN"},
            headers=auth_headers(tenant.tech_a1),
        )

        assert response.status_code == 403
        assert response.json()["message"] == "You can only update: name, mobile"

    def test_cannot_manage_higher_role(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/staff/{tenant.admin_a.id}",
            json={"name": "Demoted Admin"},
            headers=auth_headers(tenant.rm_a),
        )
        assert response.status_code == 403

    def test_admin_moves_technician(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/staff/{tenant.tech_a1.id}",
            json={"branch_id": tenant.a2.id},
            headers=auth_headers(tenant.admin_a),
        )

        assert response.status_code == 200
        assert response.json()["data"]["branch_id"] == tenant.a2.id

    def test_duplicate_mobile(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/staff/{tenant.tech_a1.id}",
            json={"mobile": tenant.tech_a2.mobile},
            headers=auth_headers(tenant.admin_a),
        )

        assert response.status_code == 409
        assert response.json()["message"] == "Mobile number already registered"


class TestStaffLifecycle:

    def test_delete_is_soft(self, client: TestClient, db, tenant, auth_headers):
        response = client.delete(f"/api/staff/{tenant.tech_a1.id}", headers=auth_headers(tenant.admin_a))
        assert response.status_code == 200

        db.expire_all()
        assert db.query(Staff).filter(Staff.id == tenant.tech_a1.id).one().is_active is False

        response = client.post(f"/api/staff/{tenant.tech_a1.id}/activate", headers=auth_headers(tenant.admin_a))
        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is True

    def test_cannot_delete_self(self, client: TestClient, tenant, auth_headers):
        response = client.delete(f"/api/staff/{tenant.admin_a.id}", headers=auth_headers(tenant.admin_a))

        assert response.status_code == 400
        assert response.json()["message"] == "You cannot delete your own account"

    def test_cannot_delete_in_other_company(self, client: TestClient, tenant, auth_headers):
        response = client.delete(f"/api/staff/{tenant.tech_a1.id}", headers=auth_headers(tenant.admin_b))
        assert response.status_code == 403


class TestPasswords:

    def test_change_own_password(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff/change-password",
            json={"current_password": PASSWORD, "new_password": "An0therPassw0rd"},
            headers=auth_headers(tenant.tech_a1),
        )
        assert response.status_code == 200

        login = client.post("/api/auth/login", json={"email": tenant.tech_a1.email, "password": "An0therPassw0rd"})
        assert login.status_code == 200

    def test_wrong_current_password(self, client: TestClient, tenant, auth_headers):
        response = client.post(
            "/api/staff/change-password",
            json={"current_password": "Wr0ngPassword", "new_password": "An0therPassw0rd"},
            headers=auth_headers(tenant.tech_a1),
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Current password is incorrect"

    def test_admin_sets_password(self, client: TestClient, db, tenant, auth_headers):
        response = client.put(
            "/api/staff/admin/change-password",
            json={"staff_id": tenant.tech_a1.id, "new_password": "Res3tPassword"},
            headers=auth_headers(tenant.admin_a),
        )
        assert response.status_code == 200

        db.refresh(tenant.tech_a1)
        assert verify_password("Res3tPassword", tenant.tech_a1.password_hash)

    def test_admin_limited_to_own_company(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            "/api/staff/admin/change-password",
            json={"staff_id": tenant.tech_a1.id, "new_password": "Res3tPassword"},
            headers=auth_headers(tenant.admin_b),
        )

        assert response.status_code == 403
        assert response.json()["message"] == "You can only manage staff from your company"

    def test_superadmin_password_is_protected(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            "/api/staff/admin/change-password",
            json={"staff_id": tenant.superadmin.id, "new_password": "Res3tPassword"},
            headers=auth_headers(tenant.superadmin),
        )

        assert response.status_code == 403
        assert response.json()["message"] == "You cannot change superadmin password"

    def test_admin_password_change_is_throttled(self, client: TestClient, tenant, auth_headers):
        headers = auth_headers(tenant.admin_b)
        body = {"staff_id": tenant.tech_a1.id, "new_password": "Res3tPassword"}
        for _ in range(5):
            client.put("/api/staff/admin/change-password", json=body, headers=headers)

        response = client.put("/api/staff/admin/change-password", json=body, headers=headers)
        assert response.status_code == 429
