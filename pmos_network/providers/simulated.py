#!/usr/bin/env python3
"""
Simulated Cloud Provider

SQL-backed stand-in for a cloud control plane. Behaves like the real
network APIs where the reconciler cares:
- Network and firewall policy names are unique per (provider, region)
- Subnets must sit inside the parent address space and must not overlap
- NICs receive the first free host address the provider hands out
- Instance names are unique per (provider, region)
- Quota and permission failures can be switched on for a context
- A failing store surfaces as the provider's "service unavailable" error

Cloud-specific naming, id formats and error codes live in clouds.py.
"""

import ipaddress
import logging
import uuid
from contextlib import contextmanager
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..api.models import (
    FirewallBinding as FirewallBindingModel,
    FirewallPolicy as FirewallPolicyModel,
    Instance as InstanceModel,
    NetworkInterface as NetworkInterfaceModel,
    Subnet as SubnetModel,
    TenantNetwork as TenantNetworkModel,
)
from ..metrics import METRICS
from ..reconciler.types import FirewallRule, InstanceSpec, ProviderKind, ResourceHandle, Topology
from .base import CloudAPIError

logger = logging.getLogger(__name__)


class SimulatedProvider:
    kind: ProviderKind = None
    topology: Topology = Topology.SINGLE_VNET
    network_suffix = "vpc"
    policy_suffix = "sg"

    # Provider-native error codes
    conflict_code = "Conflict"
    overlap_code = "SubnetOverlap"
    outside_code = "SubnetOutsideNetwork"
    not_found_code = "NotFound"
    auth_code = "AuthorizationFailed"
    quota_code = "QuotaExceeded"
    invalid_code = "InvalidParameter"
    unavailable_code = "ServiceUnavailable"

    # Addresses at the start of every subnet the provider reserves for itself
    first_host_offset = 4

    def __init__(
        self,
        db_factory: Callable[[], Session],
        region: str,
        *,
        read_only: bool = False,
        max_subnets_per_network: Optional[int] = None,
    ):
        self.db_factory = db_factory
        self.region = region
        self.read_only = read_only
        self.max_subnets_per_network = max_subnets_per_network

    def __repr__(self):
        return f"{type(self).__name__}(region={self.region!r})"

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_cidr_overlap(self, error: CloudAPIError) -> bool:
        return error.code == self.overlap_code

    def is_conflict(self, error: CloudAPIError) -> bool:
        return error.code == self.conflict_code

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def resource_id(self, kind: str, name: str, parent: Optional[ResourceHandle] = None) -> str:
        return f"{kind}-{uuid.uuid4().hex[:8]}"

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def query_network(self, name: str) -> Optional[ResourceHandle]:
        with self._session() as db:
            network = self._find_network(db, name)
            return self._network_handle(network) if network else None

    def create_network(self, name: str, cidr: str) -> ResourceHandle:
        self._check_writable("create network", name)
        self._parse_cidr(cidr)
        with self._session() as db:
            if self._find_network(db, name):
                raise CloudAPIError(self.conflict_code, f"Network {name} already exists in {self.region}", status_code=409)
            network = TenantNetworkModel(
                id=self.resource_id("network", name),
                provider=self.kind.value,
                region=self.region,
                name=name,
                cidr=cidr,
            )
            db.add(network)
            self._commit(db, name)
            db.refresh(network)
            METRICS["tenant_networks_total"].set(db.query(TenantNetworkModel).count())
            logger.info("Created network %s (%s) in %s/%s", name, cidr, self.kind.value, self.region)
            return self._network_handle(network)

    # ------------------------------------------------------------------
    # Firewall policies
    # ------------------------------------------------------------------

    def query_firewall_policy(self, name: str) -> Optional[ResourceHandle]:
        with self._session() as db:
            policy = self._find_policy(db, name)
            return self._policy_handle(policy) if policy else None

    def create_firewall_policy(
        self, name: str, rules: Sequence[FirewallRule], network: Optional[ResourceHandle] = None
    ) -> ResourceHandle:
        self._check_writable("create firewall policy", name)
        with self._session() as db:
            if self._find_policy(db, name):
                raise CloudAPIError(self.conflict_code, f"Firewall policy {name} already exists in {self.region}", status_code=409)
            policy = FirewallPolicyModel(
                id=self.resource_id("firewall_policy", name),
                provider=self.kind.value,
                region=self.region,
                name=name,
                network_id=network.id if network else None,
                rules=[rule.to_dict() for rule in rules],
            )
            db.add(policy)
            self._commit(db, name)
            db.refresh(policy)
            METRICS["firewall_policies_total"].set(db.query(FirewallPolicyModel).count())
            logger.info("Created firewall policy %s with %d rule(s)", name, len(rules))
            return self._policy_handle(policy)

    # ------------------------------------------------------------------
    # Subnets and interfaces
    # ------------------------------------------------------------------

    def list_subnets(self, parent: ResourceHandle) -> List[ResourceHandle]:
        with self._session() as db:
            rows = db.query(SubnetModel).filter(SubnetModel.network_id == parent.id).order_by(SubnetModel.name).all()
            return [self._subnet_handle(row) for row in rows]

    def create_subnet(self, parent: ResourceHandle, name: str, cidr: str) -> ResourceHandle:
        self._check_writable("create subnet", name)
        requested = self._parse_cidr(cidr)
        with self._session() as db:
            network = db.query(TenantNetworkModel).filter(TenantNetworkModel.id == parent.id).first()
            if network is None:
                raise CloudAPIError(self.not_found_code, f"Parent network {parent.id} not found", status_code=404)

            if not requested.subnet_of(ipaddress.ip_network(network.cidr)):
                raise CloudAPIError(
                    self.outside_code,
                    f"Subnet {name} range {cidr} is outside the address space {network.cidr} of {network.name}",
                    status_code=400,
                )

            existing = db.query(SubnetModel).filter(SubnetModel.network_id == network.id).all()
            if self.max_subnets_per_network is not None and len(existing) >= self.max_subnets_per_network:
                raise CloudAPIError(
                    self.quota_code,
                    f"Network {network.name} has reached its limit of {self.max_subnets_per_network} subnets",
                    status_code=403,
                )
            for other in existing:
                if other.name == name:
                    raise CloudAPIError(self.conflict_code, f"Subnet {name} already exists in {network.name}", status_code=409)
                if requested.overlaps(ipaddress.ip_network(other.cidr)):
                    raise CloudAPIError(
                        self.overlap_code,
                        f"Subnet {name} range {cidr} overlaps existing subnet {other.name} ({other.cidr})",
                        status_code=400,
                    )

            subnet = SubnetModel(
                id=self.resource_id("subnet", name, parent),
                network_id=network.id,
                name=name,
                cidr=cidr,
                gateway=str(requested.network_address + 1),
                status="available",
            )
            db.add(subnet)
            self._commit(db, name)
            db.refresh(subnet)
            METRICS["subnets_total"].set(db.query(SubnetModel).count())
            logger.info("Created subnet %s (%s) under %s", name, cidr, network.name)
            return self._subnet_handle(subnet)

    def query_network_interface(self, subnet: ResourceHandle, name: str) -> Optional[ResourceHandle]:
        with self._session() as db:
            nic = db.query(NetworkInterfaceModel).filter(
                NetworkInterfaceModel.subnet_id == subnet.id,
                NetworkInterfaceModel.name == name,
            ).first()
            return self._interface_handle(nic, subnet.cidr) if nic else None

    def create_network_interface(self, subnet: ResourceHandle, name: str) -> ResourceHandle:
        self._check_writable("create network interface", name)
        with self._session() as db:
            row = db.query(SubnetModel).filter(SubnetModel.id == subnet.id).first()
            if row is None:
                raise CloudAPIError(self.not_found_code, f"Subnet {subnet.id} not found", status_code=404)

            block = ipaddress.ip_network(row.cidr)
            used = db.query(NetworkInterfaceModel).filter(NetworkInterfaceModel.subnet_id == row.id).count()
            private_ip = block.network_address + self.first_host_offset + used
            if private_ip >= block.broadcast_address:
                raise CloudAPIError(self.quota_code, f"Subnet {row.name} has no free addresses", status_code=403)

            nic = NetworkInterfaceModel(
                id=self.resource_id("interface", name, subnet),
                subnet_id=row.id,
                name=name,
                private_ip=str(private_ip),
            )
            db.add(nic)
            self._commit(db, name)
            db.refresh(nic)
            return self._interface_handle(nic, row.cidr)

    # ------------------------------------------------------------------
    # Bindings and instances
    # ------------------------------------------------------------------

    def bind_firewall(self, target: ResourceHandle, policy: ResourceHandle) -> None:
        self._check_writable("bind firewall policy", policy.name)
        target_models = {"subnet": SubnetModel, "interface": NetworkInterfaceModel}
        if target.kind not in target_models:
            raise CloudAPIError(self.invalid_code, f"Cannot bind a firewall policy to a {target.kind}", status_code=400)

        with self._session() as db:
            if db.query(FirewallPolicyModel).filter(FirewallPolicyModel.id == policy.id).first() is None:
                raise CloudAPIError(self.not_found_code, f"Firewall policy {policy.id} not found", status_code=404)
            model = target_models[target.kind]
            if db.query(model).filter(model.id == target.id).first() is None:
                raise CloudAPIError(self.not_found_code, f"{target.kind.capitalize()} {target.id} not found", status_code=404)

            existing = db.query(FirewallBindingModel).filter(
                FirewallBindingModel.policy_id == policy.id,
                FirewallBindingModel.target_id == target.id,
            ).first()
            if existing:
                return

            db.add(FirewallBindingModel(policy_id=policy.id, target_id=target.id, target_kind=target.kind))
            self._commit(db, policy.name)
            logger.info("Bound firewall policy %s to %s %s", policy.name, target.kind, target.name)

    def create_instance(self, spec: InstanceSpec) -> ResourceHandle:
        self._check_writable("create instance", spec.name)
        with self._session() as db:
            nic = db.query(NetworkInterfaceModel).filter(NetworkInterfaceModel.id == spec.interface.id).first()
            if nic is None:
                raise CloudAPIError(self.not_found_code, f"Network interface {spec.interface.id} not found", status_code=404)
            duplicate = db.query(InstanceModel).filter(
                InstanceModel.provider == self.kind.value,
                InstanceModel.region == self.region,
                InstanceModel.name == spec.name,
            ).first()
            if duplicate:
                raise CloudAPIError(self.conflict_code, f"Instance {spec.name} already exists in {self.region}", status_code=409)

            instance = InstanceModel(
                id=self.resource_id("instance", spec.name),
                provider=self.kind.value,
                region=self.region,
                name=spec.name,
                interface_id=nic.id,
                vm_size=spec.vm_size,
                os_type=spec.os_type.value,
                image_reference=spec.image_reference,
                custom_script=spec.custom_script,
                admin_username=spec.admin_username,
                ssh_public_key=spec.ssh_public_key,
                status="running",
            )
            db.add(instance)
            self._commit(db, spec.name)
            db.refresh(instance)
            METRICS["instances_total"].set(db.query(InstanceModel).count())
            logger.info("Created %s instance %s (%s) at %s", spec.os_type.value, spec.name, spec.vm_size, nic.private_ip)
            return ResourceHandle(
                id=instance.id, name=instance.name, kind="instance", private_ip=nic.private_ip, parent_id=nic.id
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self):
        db = self.db_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Provider store failure in %s: %s", self.region, e)
            raise CloudAPIError(
                self.unavailable_code,
                f"The service is temporarily unavailable: {e.__class__.__name__}",
                status_code=503,
            ) from e
        finally:
            db.close()

    def _find_network(self, db: Session, name: str):
        return db.query(TenantNetworkModel).filter(
            TenantNetworkModel.provider == self.kind.value,
            TenantNetworkModel.region == self.region,
            TenantNetworkModel.name == name,
        ).first()

    def _find_policy(self, db: Session, name: str):
        return db.query(FirewallPolicyModel).filter(
            FirewallPolicyModel.provider == self.kind.value,
            FirewallPolicyModel.region == self.region,
            FirewallPolicyModel.name == name,
        ).first()

    def _network_handle(self, network: TenantNetworkModel) -> ResourceHandle:
        return ResourceHandle(id=network.id, name=network.name, kind="network", cidr=network.cidr)

    def _policy_handle(self, policy: FirewallPolicyModel) -> ResourceHandle:
        return ResourceHandle(id=policy.id, name=policy.name, kind="firewall_policy", parent_id=policy.network_id)

    def _subnet_handle(self, subnet: SubnetModel) -> ResourceHandle:
        return ResourceHandle(id=subnet.id, name=subnet.name, kind="subnet", cidr=subnet.cidr, parent_id=subnet.network_id)

    def _interface_handle(self, nic: NetworkInterfaceModel, cidr: str) -> ResourceHandle:
        return ResourceHandle(
            id=nic.id, name=nic.name, kind="interface", cidr=cidr, private_ip=nic.private_ip, parent_id=nic.subnet_id
        )

    def _check_writable(self, operation: str, name: str):
        if self.read_only:
            raise CloudAPIError(
                self.auth_code,
                f"The client does not have permission to {operation} {name}",
                status_code=403,
            )

    def _parse_cidr(self, cidr: str):
        try:
            return ipaddress.ip_network(cidr)
        except ValueError as e:
            raise CloudAPIError(self.invalid_code, f"Invalid address prefix {cidr}: {e}", status_code=400)

    def _commit(self, db: Session, name: str):
        # Unique constraints catch a concurrent create that slipped past the existence check
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise CloudAPIError(self.conflict_code, f"Resource {name} already exists", status_code=409)
