# api/shared_api_logic.py
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .. import config
from ..providers.clouds import PROVIDERS, build_provider
from ..reconciler.reconciler import TenantNetworkReconciler, tenant_resource_name
from ..reconciler.types import (
    DeploymentDescriptor,
    DeploymentOutputs,
    OsType,
    ProviderKind,
    parse_attachment_mode,
)
from .models import (
    FirewallBinding as FirewallBindingModel,
    FirewallPolicy as FirewallPolicyModel,
    Subnet as SubnetModel,
    TenantNetwork as TenantNetworkModel,
)


def resolve_provider_kind(provider: Optional[str]) -> ProviderKind:
    value = (provider or config.DEFAULT_PROVIDER).lower()
    try:
        return ProviderKind(value)
    except ValueError:
        raise ValueError(f"Unknown provider: {value}")


# Deployment Services
def deploy_logic(
    db_factory: Callable[[], Session],
    *,
    tenant_id: str,
    instance_name: str,
    region: Optional[str],
    vm_size: str,
    os_type: str,
    custom_script: str = "",
    image_reference: str = "",
    provider: Optional[str] = None,
    address_space: Optional[str] = None,
    public_access: bool = False,
    management_source: Optional[str] = None,
    attachment_mode: str = "subnet",
    admin_username: str = "pmosadmin",
    seed: Optional[int] = None,
) -> DeploymentOutputs:
    kind = resolve_provider_kind(provider)
    region = region or config.DEFAULT_REGION
    descriptor = DeploymentDescriptor(
        tenant_id=tenant_id,
        instance_name=instance_name,
        region=region,
        vm_size=vm_size,
        os_type=OsType(os_type),
        custom_script=custom_script,
        image_reference=image_reference,
        provider=kind,
        address_space=address_space,
        public_access=public_access,
        management_source=management_source,
        attachment_mode=parse_attachment_mode(attachment_mode),
        admin_username=admin_username,
        seed=seed,
    )
    reconciler = TenantNetworkReconciler(
        build_provider(kind, region, db_factory),
        management_source=config.MANAGEMENT_SOURCE,
    )
    return reconciler.deploy(descriptor)


# Tenant Network Services (read-only, never create)
def get_tenant_network_logic(db: Session, tenant_id: str, provider: Optional[str], region: Optional[str]):
    kind = resolve_provider_kind(provider)
    region = region or config.DEFAULT_REGION
    provider_cls = PROVIDERS[kind]
    network = db.query(TenantNetworkModel).filter(
        TenantNetworkModel.provider == kind.value,
        TenantNetworkModel.region == region,
        TenantNetworkModel.name == tenant_resource_name(tenant_id, provider_cls.network_suffix),
    ).first()
    if network is None:
        return None

    policy = db.query(FirewallPolicyModel).filter(
        FirewallPolicyModel.provider == kind.value,
        FirewallPolicyModel.region == region,
        FirewallPolicyModel.name == tenant_resource_name(tenant_id, provider_cls.policy_suffix),
    ).first()
    return {
        "tenant_id": tenant_id,
        "provider": kind.value,
        "region": region,
        "network": {"id": network.id, "name": network.name, "cidr": network.cidr},
        "firewall_policy": (
            {"id": policy.id, "name": policy.name, "rules": policy.rules or []} if policy else None
        ),
        "subnet_count": len(network.subnets),
    }


def list_tenant_subnets(db: Session, tenant_id: str, provider: Optional[str], region: Optional[str]) -> Optional[List[dict]]:
    view = get_tenant_network_logic(db, tenant_id, provider, region)
    if view is None:
        return None
    subnets = db.query(SubnetModel).filter(SubnetModel.network_id == view["network"]["id"]).all()
    return [
        {
            "id": s.id,
            "name": s.name,
            "cidr": s.cidr,
            "gateway": s.gateway,
            "status": s.status,
            "policy_ids": [
                b.policy_id
                for b in db.query(FirewallBindingModel).filter(FirewallBindingModel.target_id == s.id).all()
            ],
        }
        for s in subnets
    ]
