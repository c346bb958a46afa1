# File: pmos_network/api/rest_api_server.py
#!/usr/bin/env python3
"""
PMOS Tenant Network REST API Server

FastAPI-based REST API in front of the tenant network reconciler.
Covers:
- Deployments (full reconciliation pass per request)
- Tenant shared network and firewall policy lookup
- Tenant deployment subnets
- Health and Prometheus metrics
"""

import logging
import time
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..metrics import METRICS
from ..reconciler.errors import (
    ConflictingAttachmentError,
    ProviderCreateError,
    ProviderQueryError,
    ReconciliationError,
    SubnetAllocationError,
)
from ..reconciler.types import OsType, ProviderKind
from . import shared_api_logic as services
from .models import create_session_factory

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="PMOS Tenant Network Control Plane API",
    description="Idempotent tenant network, subnet and firewall reconciliation for PMOS deployments",
    version="1.0.0",
)

SessionLocal = create_session_factory()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db_factory() -> Callable[[], Session]:
    return SessionLocal


class DeploymentCreate(BaseModel):
    tenant_id: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    instance_name: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    region: Optional[str] = None
    vm_size: str
    os_type: OsType
    custom_script: str = ""
    image_reference: str = ""
    provider: Optional[ProviderKind] = None
    address_space: Optional[str] = None
    public_access: bool = False
    management_source: Optional[str] = None
    attachment_mode: str = "subnet"
    admin_username: str = "pmosadmin"
    seed: Optional[int] = None


class Deployment(BaseModel):
    private_ip: str
    instance_id: str
    private_key: Optional[str] = None
    admin_password: Optional[str] = None


class NetworkRef(BaseModel):
    id: str
    name: str
    cidr: str


class FirewallPolicyRef(BaseModel):
    id: str
    name: str
    rules: List[dict]


class TenantNetwork(BaseModel):
    tenant_id: str
    provider: str
    region: str
    network: NetworkRef
    firewall_policy: Optional[FirewallPolicyRef]
    subnet_count: int


class Subnet(BaseModel):
    id: str
    name: str
    cidr: str
    gateway: str
    status: str
    policy_ids: List[str]


ERROR_STATUS = {
    ConflictingAttachmentError: 400,
    SubnetAllocationError: 409,
    ProviderQueryError: 503,
}


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    status_code = ERROR_STATUS.get(type(exc), 502)
    if isinstance(exc, ProviderCreateError) and exc.conflict:
        status_code = 409
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error_code": exc.error_code,
            "retryable": exc.retryable,
            "provider_message": exc.provider_message,
        },
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "error_code": "invalid_request", "retryable": False},
    )


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    METRICS["api_requests"].labels(method=request.method, endpoint=request.url.path).inc()
    start = time.time()
    response = await call_next(request)
    logger.debug("%s %s -> %s in %.1fms", request.method, request.url.path, response.status_code, (time.time() - start) * 1000)
    return response


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/deployments", response_model=Deployment, status_code=201)
def create_deployment(deployment: DeploymentCreate, db_factory: Callable[[], Session] = Depends(get_db_factory)):
    outputs = services.deploy_logic(
        db_factory,
        tenant_id=deployment.tenant_id,
        instance_name=deployment.instance_name,
        region=deployment.region,
        vm_size=deployment.vm_size,
        os_type=deployment.os_type.value,
        custom_script=deployment.custom_script,
        image_reference=deployment.image_reference,
        provider=deployment.provider.value if deployment.provider else None,
        address_space=deployment.address_space,
        public_access=deployment.public_access,
        management_source=deployment.management_source,
        attachment_mode=deployment.attachment_mode,
        admin_username=deployment.admin_username,
        seed=deployment.seed,
    )
    return Deployment(
        private_ip=outputs.private_ip,
        instance_id=outputs.instance_id,
        private_key=outputs.private_key,
        admin_password=outputs.admin_password,
    )


@app.get("/tenants/{tenant_id}/network", response_model=TenantNetwork)
def get_tenant_network(
    tenant_id: str, provider: Optional[str] = None, region: Optional[str] = None, db: Session = Depends(get_db)
):
    view = services.get_tenant_network_logic(db, tenant_id, provider, region)
    if view is None:
        raise HTTPException(status_code=404, detail="Tenant network not found")
    return view


@app.get("/tenants/{tenant_id}/subnets", response_model=List[Subnet])
def list_tenant_subnets(
    tenant_id: str, provider: Optional[str] = None, region: Optional[str] = None, db: Session = Depends(get_db)
):
    subnets = services.list_tenant_subnets(db, tenant_id, provider, region)
    if subnets is None:
        raise HTTPException(status_code=404, detail="Tenant network not found")
    return subnets
