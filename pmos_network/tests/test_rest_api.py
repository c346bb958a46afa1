from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from pmos_network.api.rest_api_server import app, get_db, get_db_factory
from pmos_network.providers.base import CloudAPIError


@pytest.fixture
def client(db_factory):
    def override_get_db():
        db = db_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_db_factory] = lambda: db_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def deployment(**kwargs):
    body = {
        "tenant_id": "acme",
        "instance_name": "pmos-01",
        "region": "eastus",
        "provider": "azure",
        "vm_size": "Standard_D2s_v3",
        "os_type": "Windows",
        "image_reference": "pmos-windows-2022",
        "custom_script": "Write-Output ready",
    }
    body.update(kwargs)
    return body


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_windows_deployment(client):
    response = client.post("/deployments", json=deployment())

    assert response.status_code == 201
    data = response.json()
    assert data["private_ip"].startswith("10.0.")
    assert data["private_ip"].endswith(".4")
    assert data["instance_id"].endswith("/virtualMachines/pmos-01")
    assert len(data["admin_password"]) == 24
    assert data["private_key"] is None


def test_create_linux_deployment_on_gcp(client):
    with patch("pmos_network.reconciler.allocator.draw_octet", return_value=120):
        response = client.post(
            "/deployments",
            json=deployment(provider="gcp", region="us-central1", os_type="Linux", vm_size="e2-medium"),
        )

    assert response.status_code == 201
    data = response.json()
    assert data["private_ip"] == "10.120.0.2"
    assert "PRIVATE KEY" in data["private_key"]
    assert data["admin_password"] is None


def test_tenant_network_not_found(client):
    response = client.get("/tenants/nobody/network")
    assert response.status_code == 404


def test_tenant_network_after_deployments(client):
    with patch("pmos_network.reconciler.allocator.draw_octet", side_effect=[21, 22]):
        client.post("/deployments", json=deployment(instance_name="pmos-01"))
        client.post("/deployments", json=deployment(instance_name="pmos-02"))

    response = client.get("/tenants/acme/network", params={"provider": "azure", "region": "eastus"})

    assert response.status_code == 200
    data = response.json()
    assert data["network"]["name"] == "pmos-tenant-acme-vnet"
    assert data["network"]["cidr"] == "10.0.0.0/16"
    assert data["firewall_policy"]["name"] == "pmos-tenant-acme-nsg"
    assert data["subnet_count"] == 2

    subnets = client.get("/tenants/acme/subnets").json()
    assert sorted(s["cidr"] for s in subnets) == ["10.0.21.0/24", "10.0.22.0/24"]
    assert all(s["policy_ids"] == [data["firewall_policy"]["id"]] for s in subnets)


def test_tenant_subnets_not_found(client):
    assert client.get("/tenants/nobody/subnets").status_code == 404


def test_conflicting_attachment_is_rejected(client):
    response = client.post("/deployments", json=deployment(attachment_mode="subnet,interface"))

    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "conflicting_attachment"
    assert body["retryable"] is False
    # Nothing was created
    assert client.get("/tenants/acme/network").status_code == 404


def test_subnet_collision_is_retryable_conflict(client):
    with patch("pmos_network.reconciler.allocator.draw_octet", return_value=50):
        client.post("/deployments", json=deployment(instance_name="pmos-01"))
        response = client.post("/deployments", json=deployment(instance_name="pmos-02"))

    assert response.status_code == 409
    assert response.json()["error_code"] == "subnet_allocation_error"
    assert response.json()["retryable"] is True


def test_provider_outage_is_service_unavailable(client):
    outage = CloudAPIError("ServiceUnavailable", "try again later", status_code=503)
    with patch("pmos_network.providers.clouds.AzureProvider.query_network", side_effect=outage):
        response = client.post("/deployments", json=deployment())

    assert response.status_code == 503
    assert response.json()["error_code"] == "provider_query_error"
    assert response.json()["provider_message"] == "try again later"


def test_store_failure_is_service_unavailable(client):
    locked = OperationalError("SELECT", {}, Exception("database is locked"))
    with patch("pmos_network.providers.clouds.AzureProvider._find_network", side_effect=locked):
        response = client.post("/deployments", json=deployment())

    assert response.status_code == 503
    assert response.json()["error_code"] == "provider_query_error"
    assert response.json()["retryable"] is True


def test_unknown_provider_is_rejected(client):
    response = client.post("/deployments", json=deployment(provider="oci"))
    assert response.status_code == 422


def test_invalid_attachment_mode(client):
    response = client.post("/deployments", json=deployment(attachment_mode="vpc"))
    assert response.status_code == 422
    assert response.json()["error_code"] == "invalid_request"


def test_invalid_tenant_id(client):
    response = client.post("/deployments", json=deployment(tenant_id="Acme Corp"))
    assert response.status_code == 422


def test_metrics_endpoint(client):
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "pmos_api_requests_total" in response.text
    assert "pmos_reconciliation_duration_ms" in response.text
