"""Tests for the simulated cloud provider contexts"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from pmos_network.providers.base import CloudAPIError
from pmos_network.providers.clouds import AwsProvider, AzureProvider, GcpProvider, build_provider
from pmos_network.reconciler.types import (
    FirewallRule,
    InstanceSpec,
    OsType,
    ProviderKind,
    ResourceHandle,
    Topology,
)


class TestProviderVariants:
    """Naming, topology and id format per cloud"""

    def test_suffixes_and_topology(self):
        assert (AzureProvider.network_suffix, AzureProvider.policy_suffix) == ("vnet", "nsg")
        assert (AwsProvider.network_suffix, AwsProvider.policy_suffix) == ("vpc", "sg")
        assert GcpProvider.network_suffix == "vpc"
        assert AzureProvider.topology is Topology.SINGLE_VNET
        assert AwsProvider.topology is Topology.SINGLE_VNET
        assert GcpProvider.topology is Topology.SHARED_VPC

    def test_build_provider(self, db_factory):
        provider = build_provider("AWS", "us-west-2", db_factory)
        assert isinstance(provider, AwsProvider)
        assert provider.region == "us-west-2"
        assert isinstance(build_provider(ProviderKind.GCP, "europe-west1", db_factory), GcpProvider)

    def test_build_unknown_provider(self, db_factory):
        with pytest.raises(ValueError):
            build_provider("oci", "us-ashburn-1", db_factory)

    def test_azure_resource_ids(self, db_factory):
        azure = AzureProvider(db_factory, "eastus", subscription_id="sub-123")
        network = azure.create_network("pmos-tenant-t1-vnet", "10.0.0.0/16")
        subnet = azure.create_subnet(network, "vm-1-subnet", "10.0.5.0/24")

        assert network.id == (
            "/subscriptions/sub-123/resourceGroups/pmos-eastus"
            "/providers/Microsoft.Network/virtualNetworks/pmos-tenant-t1-vnet"
        )
        assert subnet.id == f"{network.id}/subnets/vm-1-subnet"

    def test_aws_resource_ids(self, aws):
        network = aws.create_network("pmos-tenant-t1-vpc", "10.0.0.0/16")
        policy = aws.create_firewall_policy("pmos-tenant-t1-sg", [], network)

        assert network.id.startswith("vpc-") and len(network.id) == 21
        assert policy.id.startswith("sg-")

    def test_gcp_resource_ids_are_numeric(self, gcp):
        assert gcp.create_network("pmos-tenant-t1-vpc", "10.0.0.0/8").id.isdigit()


class TestSimulatedProvider:
    """Behaviour shared by every simulated cloud"""

    def test_query_missing_network(self, azure):
        assert azure.query_network("pmos-tenant-none-vnet") is None
        assert azure.query_firewall_policy("pmos-tenant-none-nsg") is None

    def test_duplicate_network_is_a_conflict(self, azure):
        azure.create_network("pmos-tenant-t1-vnet", "10.0.0.0/16")

        with pytest.raises(CloudAPIError) as exc_info:
            azure.create_network("pmos-tenant-t1-vnet", "10.0.0.0/16")

        assert azure.is_conflict(exc_info.value)
        assert exc_info.value.status_code == 409

    def test_invalid_cidr(self, azure):
        with pytest.raises(CloudAPIError) as exc_info:
            azure.create_network("pmos-tenant-t1-vnet", "10.0.0.300/16")
        assert exc_info.value.code == "InvalidAddressPrefixFormat"

    def test_subnet_outside_network(self, aws):
        network = aws.create_network("pmos-tenant-t1-vpc", "10.0.0.0/16")

        with pytest.raises(CloudAPIError) as exc_info:
            aws.create_subnet(network, "vm-1-subnet", "10.1.0.0/24")

        assert exc_info.value.code == "InvalidSubnet.Range"
        assert not aws.is_cidr_overlap(exc_info.value)

    @pytest.mark.parametrize("provider_fixture,code", [
        ("aws", "InvalidSubnet.Conflict"),
        ("azure", "NetcfgSubnetRangesOverlap"),
        ("gcp", "IP_CIDR_RANGE_OVERLAP"),
    ])
    def test_overlap_codes(self, request, provider_fixture, code):
        provider = request.getfixturevalue(provider_fixture)
        network = provider.create_network("pmos-tenant-t1-net", "10.0.0.0/8")
        provider.create_subnet(network, "a", "10.0.7.0/24")

        with pytest.raises(CloudAPIError) as exc_info:
            provider.create_subnet(network, "b", "10.0.7.0/24")

        assert exc_info.value.code == code
        assert provider.is_cidr_overlap(exc_info.value)

    def test_read_only_context_denies_writes(self, db_factory):
        gcp = GcpProvider(db_factory, "us-central1", read_only=True)

        with pytest.raises(CloudAPIError) as exc_info:
            gcp.create_network("pmos-tenant-t1-vpc", "10.0.0.0/8")

        assert exc_info.value.code == "forbidden"
        assert exc_info.value.status_code == 403
        assert gcp.query_network("pmos-tenant-t1-vpc") is None

    def test_network_interface_addresses(self, azure, gcp):
        vnet = azure.create_network("pmos-tenant-t1-vnet", "10.0.0.0/16")
        azure_subnet = azure.create_subnet(vnet, "vm-1-subnet", "10.0.5.0/24")
        first = azure.create_network_interface(azure_subnet, "vm-1-nic")
        second = azure.create_network_interface(azure_subnet, "vm-1b-nic")

        vpc = gcp.create_network("pmos-tenant-t1-vpc", "10.0.0.0/8")
        gcp_subnet = gcp.create_subnet(vpc, "vm-1-subnet-5", "10.5.0.0/24")

        assert first.private_ip == "10.0.5.4"
        assert second.private_ip == "10.0.5.5"
        assert gcp.create_network_interface(gcp_subnet, "vm-1-nic").private_ip == "10.5.0.2"

    def test_bind_requires_subnet_or_interface(self, azure):
        network = azure.create_network("pmos-tenant-t1-vnet", "10.0.0.0/16")
        policy = azure.create_firewall_policy("pmos-tenant-t1-nsg", [], network)

        with pytest.raises(CloudAPIError):
            azure.bind_firewall(network, policy)

    def test_bind_unknown_target(self, azure):
        policy = azure.create_firewall_policy("pmos-tenant-t1-nsg", [])
        ghost = ResourceHandle(id="missing", name="ghost", kind="subnet")

        with pytest.raises(CloudAPIError) as exc_info:
            azure.bind_firewall(ghost, policy)

        assert exc_info.value.code == "ResourceNotFound"

    def test_create_instance(self, aws):
        network = aws.create_network("pmos-tenant-t1-vpc", "10.0.0.0/16")
        subnet = aws.create_subnet(network, "vm-1-subnet", "10.0.9.0/24")
        nic = aws.create_network_interface(subnet, "vm-1-nic")
        spec = InstanceSpec(
            name="vm-1",
            vm_size="t3.medium",
            os_type=OsType.LINUX,
            image_reference="ami-pmos",
            custom_script="#!/bin/sh\necho ok",
            interface=nic,
            admin_username="pmosadmin",
            ssh_public_key="ssh-rsa AAAA",
        )

        instance = aws.create_instance(spec)

        assert instance.kind == "instance"
        assert instance.private_ip == "10.0.9.4"
        assert instance.id.startswith("i-")

    def test_duplicate_instance_name_is_a_conflict(self, aws):
        network = aws.create_network("pmos-tenant-t1-vpc", "10.0.0.0/16")
        subnet = aws.create_subnet(network, "vm-1-subnet", "10.0.9.0/24")
        spec = InstanceSpec(
            name="vm-1",
            vm_size="t3.medium",
            os_type=OsType.WINDOWS,
            image_reference="ami-pmos",
            custom_script="",
            interface=aws.create_network_interface(subnet, "vm-1-nic"),
            admin_username="pmosadmin",
        )
        aws.create_instance(spec)

        with pytest.raises(CloudAPIError) as exc_info:
            aws.create_instance(spec)

        assert aws.is_conflict(exc_info.value)

    def test_list_subnets(self, azure):
        network = azure.create_network("pmos-tenant-t1-vnet", "10.0.0.0/16")
        azure.create_subnet(network, "vm-2-subnet", "10.0.8.0/24")
        azure.create_subnet(network, "vm-1-subnet", "10.0.7.0/24")
        other = azure.create_network("pmos-tenant-t2-vnet", "10.0.0.0/16")
        azure.create_subnet(other, "vm-3-subnet", "10.0.7.0/24")

        subnets = azure.list_subnets(network)

        assert [(s.name, s.cidr) for s in subnets] == [("vm-1-subnet", "10.0.7.0/24"), ("vm-2-subnet", "10.0.8.0/24")]
        assert all(s.kind == "subnet" and s.parent_id == network.id for s in subnets)

    def test_query_network_interface(self, gcp):
        network = gcp.create_network("pmos-tenant-t1-vpc", "10.0.0.0/8")
        subnet = gcp.create_subnet(network, "vm-1-subnet-5", "10.5.0.0/24")
        nic = gcp.create_network_interface(subnet, "vm-1-nic")

        assert gcp.query_network_interface(subnet, "vm-1-nic") == nic
        assert gcp.query_network_interface(subnet, "vm-2-nic") is None

    @pytest.mark.parametrize("provider_fixture,code", [
        ("aws", "Unavailable"),
        ("azure", "ServiceUnavailable"),
        ("gcp", "backendError"),
    ])
    def test_store_failure_is_service_unavailable(self, request, provider_fixture, code):
        provider = request.getfixturevalue(provider_fixture)
        locked = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(provider, "_find_network", side_effect=locked):
            with pytest.raises(CloudAPIError) as exc_info:
                provider.query_network("pmos-tenant-t1-vpc")

        assert exc_info.value.code == code
        assert exc_info.value.status_code == 503
        assert exc_info.value.__cause__ is locked

    def test_policy_rules_round_trip(self, azure):
        rule = FirewallRule("allow-ssh", "tcp", "22", "10.0.0.0/16", 100)
        azure.create_firewall_policy("pmos-tenant-t1-nsg", [rule])

        from pmos_network.api.models import FirewallPolicy as FirewallPolicyModel

        db = azure.db_factory()
        try:
            stored = db.query(FirewallPolicyModel).one().rules
        finally:
            db.close()
        assert [FirewallRule.from_dict(r) for r in stored] == [rule]

    def test_cloud_api_error_message(self):
        error = CloudAPIError("Conflict", "already exists", status_code=409)
        assert str(error) == "Conflict: already exists"
        assert error.message == "already exists"
