"""
Tests for /api/companies.
"""

from fastapi.testclient import TestClient

from pestcontrol.models.auth import Staff
from pestcontrol.models.platform import Branch, Company

COMPANY = {
    "name": "Gamma Pest Solutions",
    "email": "Contact@Gamma.example.com",
    "phone": "9876500000",
    "city": "Chennai",
    "state": "Tamil Nadu",
    "pincode": "600001",
}


class TestCreateCompany:

    def test_superadmin_creates(self, client: TestClient, tenant, auth_headers):
        response = client.post("/api/companies", json=COMPANY, headers=auth_headers(tenant.superadmin))

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["name"] == "Gamma Pest Solutions"
        assert data["email"] == "contact@gamma.example.com"
        assert data["subscription_plan"] == "BASIC"
        assert data["is_active"] is True

    def test_admin_cannot_create(self, client: TestClient, tenant, auth_headers):
        response = client.post("/api/companies", json=COMPANY, headers=auth_headers(tenant.admin_a))

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied. Missing permission company.create."

    def test_duplicate_email(self, client: TestClient, tenant, auth_headers):
        body = dict(COMPANY, email=tenant.company_a.email)
        response = client.post("/api/companies", json=body, headers=auth_headers(tenant.superadmin))

        assert response.status_code == 409
        assert response.json()["message"] == "Company with this email already exists"

    def test_invalid_pincode(self, client: TestClient, tenant, auth_headers):
        body = dict(COMPANY, pincode="12")
        response = client.post("/api/companies", json=body, headers=auth_headers(tenant.superadmin))

        assert response.status_code == 400
        assert "pincode" in response.json()["message"]


class TestReadCompanies:

    def test_superadmin_lists_every_company(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/companies", headers=auth_headers(tenant.superadmin))

        assert response.status_code == 200
        body = response.json()
        assert {c["id"] for c in body["data"]} == {tenant.company_a.id, tenant.company_b.id}
        assert body["pagination"]["total_records"] == 2

    def test_admin_lists_only_own_company(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/companies", headers=auth_headers(tenant.admin_a))

        data = response.json()["data"]
        assert [c["id"] for c in data] == [tenant.company_a.id]
        assert data[0]["total_branches"] == 2
        assert data[0]["active_staff"] == 5

    def test_filters(self, client: TestClient, tenant, auth_headers):
        headers = auth_headers(tenant.superadmin)

        response = client.get("/api/companies?search=beta", headers=headers)
        assert [c["id"] for c in response.json()["data"]] == [tenant.company_b.id]

        response = client.get("/api/companies?status=inactive", headers=headers)
        assert response.json()["data"] == []

    def test_read_own_company(self, client: TestClient, tenant, auth_headers):
        response = client.get(f"/api/companies/{tenant.company_a.id}", headers=auth_headers(tenant.am_a1))

        assert response.status_code == 200
        assert response.json()["data"]["active_branches"] == 2

    def test_read_other_company(self, client: TestClient, tenant, auth_headers):
        response = client.get(f"/api/companies/{tenant.company_b.id}", headers=auth_headers(tenant.admin_a))

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied. You can only access resources from your own company."

    def test_technician_has_no_company_view(self, client: TestClient, tenant, auth_headers):
        response = client.get(f"/api/companies/{tenant.company_a.id}", headers=auth_headers(tenant.tech_a1))
        assert response.status_code == 403

    def test_unknown_company(self, client: TestClient, tenant, auth_headers):
        response = client.get("/api/companies/missing", headers=auth_headers(tenant.superadmin))

        assert response.status_code == 404
        assert response.json()["message"] == "Company not found"

    def test_active_companies_are_public(self, client: TestClient, tenant, make_company):
        make_company(name="Dormant Co", is_active=False)
        response = client.get("/api/companies/active")

        assert response.status_code == 200
        assert {c["name"] for c in response.json()["data"]} == {"Alpha Pest Control", "Beta Pest Control"}

    def test_stats_are_superadmin_only(self, client: TestClient, tenant, auth_headers):
        assert client.get("/api/companies/stats/overview", headers=auth_headers(tenant.admin_a)).status_code == 403

        response = client.get("/api/companies/stats/overview", headers=auth_headers(tenant.superadmin))
        data = response.json()["data"]
        assert data["companies"] == {"total": 2, "active": 2, "inactive": 0}
        assert data["branches"]["total"] == 3
        assert data["staff"]["total"] == 7


class TestUpdateCompany:

    def test_admin_updates_own_company(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/companies/{tenant.company_a.id}",
            json={"city": "Mumbai"},
            headers=auth_headers(tenant.admin_a),
        )

        assert response.status_code == 200
        assert response.json()["data"]["city"] == "Mumbai"
        assert response.json()["data"]["name"] == "Alpha Pest Control"

    def test_admin_cannot_update_other_company(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/companies/{tenant.company_b.id}",
            json={"city": "Mumbai"},
            headers=auth_headers(tenant.admin_a),
        )
        assert response.status_code == 403

    def test_email_must_stay_unique(self, client: TestClient, tenant, auth_headers):
        response = client.put(
            f"/api/companies/{tenant.company_a.id}",
            json={"email": tenant.company_b.email},
            headers=auth_headers(tenant.superadmin),
        )
        assert response.status_code == 409


class TestCompanyLifecycle:

    def test_deactivate_cascades(self, client: TestClient, db, tenant, auth_headers):
        response = client.patch(
            f"/api/companies/{tenant.company_a.id}/deactivate",
            headers=auth_headers(tenant.superadmin),
        )
        assert response.status_code == 200

        db.expire_all()
        assert db.query(Branch).filter(Branch.company_id == tenant.company_a.id, Branch.is_active.is_(True)).count() == 0
        assert db.query(Staff).filter(Staff.company_id == tenant.company_a.id, Staff.is_active.is_(True)).count() == 0
        # the other tenant is untouched
        assert db.query(Staff).filter(Staff.company_id == tenant.company_b.id, Staff.is_active.is_(True)).count() == 2

    def test_activate(self, client: TestClient, db, tenant, auth_headers):
        headers = auth_headers(tenant.superadmin)
        client.patch(f"/api/companies/{tenant.company_b.id}/deactivate", headers=headers)
        response = client.patch(f"/api/companies/{tenant.company_b.id}/activate", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is True

    def test_delete_refused_while_active_children(self, client: TestClient, tenant, auth_headers):
        response = client.delete(f"/api/companies/{tenant.company_a.id}", headers=auth_headers(tenant.superadmin))
        assert response.status_code == 400

    def test_delete_is_soft(self, client: TestClient, db, tenant, auth_headers):
        headers = auth_headers(tenant.superadmin)
        client.patch(f"/api/companies/{tenant.company_b.id}/deactivate", headers=headers)
        response = client.delete(f"/api/companies/{tenant.company_b.id}", headers=headers)

        assert response.status_code == 200
        db.expire_all()
        company = db.query(Company).filter(Company.id == tenant.company_b.id).one()
        assert company.is_active is False

    def test_lifecycle_is_superadmin_only(self, client: TestClient, tenant, auth_headers):
        response = client.patch(
            f"/api/companies/{tenant.company_a.id}/deactivate",
            headers=auth_headers(tenant.admin_a),
        )
        assert response.status_code == 403
