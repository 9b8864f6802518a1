import dataclasses

import pulumi
from pulumi_azure_native import compute, network, privatedns, resources, storage
from typing import Any, Dict, List, Optional

from config import ConfigError, TemplateParameters

NOT_DEPLOYED = "not-deployed"

PRIVATE_ENDPOINT_GROUP_ID = "blob"
SSH_RULE_BASE_PRIORITY = 100
SSH_RULE_PRIORITY_STEP = 10

VM_IMAGE = {
    "publisher": "Canonical",
    "offer": "0001-com-ubuntu-server-jammy",
    "sku": "22_04-lts-gen2",
    "version": "latest",
}


class PrivateStorageBuilder:
    """Declares a VNet, a locked-down storage account reachable over a private
    endpoint, and an optional test VM.

    Created resources are kept in ``resources`` keyed by their role, e.g.
    ``vnet``, ``storageAccount`` or ``privateEndpoint``.
    """

    def __init__(self, params: TemplateParameters, admin_password: Optional[str] = None):
        # A password from stack config replaces the file value and goes through the same rules.
        if admin_password is not None:
            if not isinstance(admin_password, str):
                raise ConfigError(["vmAdminPassword must be a plain string so it can be validated"])
            params = dataclasses.replace(params, vm_admin_password=admin_password)
            params.validate()

        self.params = params
        self.resources: Dict[str, pulumi.Resource] = {}

        password = params.vm_admin_password
        if params.deploy_test_vm and password is None:
            raise ConfigError(["vmAdminPassword is required when deployTestVm is true"])
        self.admin_password = pulumi.Output.secret(password) if password is not None else None

    @property
    def resource_group_name(self) -> pulumi.Input[str]:
        group = self.resources.get("resourceGroup")
        return group.name if group is not None else self.params.resource_group_name

    @property
    def private_dns_zone_name(self) -> str:
        return f"privatelink.{PRIVATE_ENDPOINT_GROUP_ID}.{self.params.storage_endpoint_suffix}"

    def generate_resource_name(self, base_name: str) -> str:
        return f"{self.params.prefix}-{self.params.environment}-{base_name}".lower()

    def _register(self, key: str, resource: pulumi.Resource, name: str) -> pulumi.Resource:
        self.resources[key] = resource
        pulumi.log.info(f"Created resource: {name} ({key})")
        return resource

    def ssh_security_rules(self) -> List[network.SecurityRuleArgs]:
        rules = []
        for index, cidr in enumerate(self.params.allowed_ssh_cidrs):
            rules.append(
                network.SecurityRuleArgs(
                    name=f"AllowSsh-{index}",
                    priority=SSH_RULE_BASE_PRIORITY + index * SSH_RULE_PRIORITY_STEP,
                    direction="Inbound",
                    access="Allow",
                    protocol="Tcp",
                    source_port_range="*",
                    destination_port_range="22",
                    source_address_prefix=cidr,
                    destination_address_prefix="*",
                )
            )
        return rules

    def build(self):
        self.build_resource_group()
        self.build_network()
        self.build_storage()
        self.build_private_link()
        if self.params.deploy_test_vm:
            self.build_test_vm()
        else:
            pulumi.log.info("deployTestVm is false, skipping the test VM stack")

    def build_resource_group(self):
        if not self.params.create_resource_group:
            pulumi.log.warn(
                f"Using existing resource group '{self.params.resource_group_name}'; it must already exist."
            )
            return
        self._register(
            "resourceGroup",
            resources.ResourceGroup(
                self.params.resource_group_name,
                resource_group_name=self.params.resource_group_name,
                location=self.params.location,
                tags=self.params.tags,
            ),
            self.params.resource_group_name,
        )

    def build_network(self):
        p = self.params

        vnet_name = self.generate_resource_name("vnet")
        vnet = self._register(
            "vnet",
            network.VirtualNetwork(
                vnet_name,
                virtual_network_name=vnet_name,
                resource_group_name=self.resource_group_name,
                location=p.location,
                address_space=network.AddressSpaceArgs(address_prefixes=[p.vnet_address_prefix]),
                tags=p.tags,
            ),
            vnet_name,
        )

        nsg = None
        if p.deploy_test_vm:
            nsg_name = self.generate_resource_name("nsg-vm")
            nsg = self._register(
                "networkSecurityGroup",
                network.NetworkSecurityGroup(
                    nsg_name,
                    network_security_group_name=nsg_name,
                    resource_group_name=self.resource_group_name,
                    location=p.location,
                    security_rules=self.ssh_security_rules(),
                    tags=p.tags,
                ),
                nsg_name,
            )

        # Azure rejects concurrent subnet updates on the same VNet, so chain them.
        subnet_specs = [
            (
                "serviceEndpointSubnet",
                "snet-storage",
                dict(
                    address_prefix=p.service_endpoint_subnet_prefix,
                    service_endpoints=[
                        network.ServiceEndpointPropertiesFormatArgs(
                            service="Microsoft.Storage",
                            locations=[p.location],
                        )
                    ],
                ),
            ),
            (
                "privateEndpointSubnet",
                "snet-endpoints",
                dict(
                    address_prefix=p.private_endpoint_subnet_prefix,
                    private_endpoint_network_policies="Disabled",
                ),
            ),
            (
                "vmSubnet",
                "snet-vm",
                dict(
                    address_prefix=p.vm_subnet_prefix,
                    network_security_group=network.NetworkSecurityGroupArgs(id=nsg.id) if nsg else None,
                ),
            ),
        ]

        previous = None
        for key, base_name, args in subnet_specs:
            subnet_name = self.generate_resource_name(base_name)
            previous = self._register(
                key,
                network.Subnet(
                    subnet_name,
                    subnet_name=subnet_name,
                    resource_group_name=self.resource_group_name,
                    virtual_network_name=vnet.name,
                    opts=pulumi.ResourceOptions(depends_on=[previous] if previous else None),
                    **args,
                ),
                subnet_name,
            )

    def build_storage(self):
        p = self.params
        self._register(
            "storageAccount",
            storage.StorageAccount(
                self.generate_resource_name("storage"),
                account_name=p.storage_account_name,
                resource_group_name=self.resource_group_name,
                location=p.location,
                kind=p.storage_kind,
                sku=storage.SkuArgs(name=p.storage_sku),
                public_network_access="Disabled",
                allow_blob_public_access=False,
                enable_https_traffic_only=True,
                minimum_tls_version="TLS1_2",
                network_rule_set=storage.NetworkRuleSetArgs(
                    default_action="Deny",
                    bypass="AzureServices",
                    virtual_network_rules=[
                        storage.VirtualNetworkRuleArgs(
                            virtual_network_resource_id=self.resources["serviceEndpointSubnet"].id,
                            action="Allow",
                        )
                    ],
                ),
                tags=p.tags,
            ),
            p.storage_account_name,
        )

    def build_private_link(self):
        p = self.params
        zone_name = self.private_dns_zone_name

        zone = self._register(
            "privateDnsZone",
            privatedns.PrivateZone(
                self.generate_resource_name("pdz-blob"),
                private_zone_name=zone_name,
                resource_group_name=self.resource_group_name,
                location="global",
                tags=p.tags,
            ),
            zone_name,
        )

        link_name = self.generate_resource_name("pdz-link")
        self._register(
            "privateDnsZoneLink",
            privatedns.VirtualNetworkLink(
                link_name,
                virtual_network_link_name=link_name,
                private_zone_name=zone.name,
                resource_group_name=self.resource_group_name,
                location="global",
                registration_enabled=False,
                virtual_network=privatedns.SubResourceArgs(id=self.resources["vnet"].id),
                tags=p.tags,
            ),
            link_name,
        )

        endpoint_name = self.generate_resource_name(f"pe-{PRIVATE_ENDPOINT_GROUP_ID}")
        endpoint = self._register(
            "privateEndpoint",
            network.PrivateEndpoint(
                endpoint_name,
                private_endpoint_name=endpoint_name,
                resource_group_name=self.resource_group_name,
                location=p.location,
                subnet=network.SubnetArgs(id=self.resources["privateEndpointSubnet"].id),
                private_link_service_connections=[
                    network.PrivateLinkServiceConnectionArgs(
                        name=f"{endpoint_name}-connection",
                        private_link_service_id=self.resources["storageAccount"].id,
                        group_ids=[PRIVATE_ENDPOINT_GROUP_ID],
                    )
                ],
                tags=p.tags,
            ),
            endpoint_name,
        )

        group_name = self.generate_resource_name("pdz-group")
        self._register(
            "privateDnsZoneGroup",
            network.PrivateDnsZoneGroup(
                group_name,
                private_dns_zone_group_name="default",
                private_endpoint_name=endpoint.name,
                resource_group_name=self.resource_group_name,
                private_dns_zone_configs=[
                    network.PrivateDnsZoneConfigArgs(
                        name=zone_name.replace(".", "-"),
                        private_dns_zone_id=zone.id,
                    )
                ],
            ),
            group_name,
        )

    def build_test_vm(self):
        p = self.params

        pip_name = self.generate_resource_name("pip-vm")
        public_ip = self._register(
            "publicIp",
            network.PublicIPAddress(
                pip_name,
                public_ip_address_name=pip_name,
                resource_group_name=self.resource_group_name,
                location=p.location,
                sku=network.PublicIPAddressSkuArgs(name="Standard"),
                public_ip_allocation_method="Static",
                tags=p.tags,
            ),
            pip_name,
        )

        nic_name = self.generate_resource_name("nic-vm")
        nic = self._register(
            "networkInterface",
            network.NetworkInterface(
                nic_name,
                network_interface_name=nic_name,
                resource_group_name=self.resource_group_name,
                location=p.location,
                ip_configurations=[
                    network.NetworkInterfaceIPConfigurationArgs(
                        name="ipconfig1",
                        private_ip_allocation_method="Dynamic",
                        subnet=network.SubnetArgs(id=self.resources["vmSubnet"].id),
                        public_ip_address=network.PublicIPAddressArgs(id=public_ip.id),
                    )
                ],
                tags=p.tags,
            ),
            nic_name,
        )

        vm_name = self.generate_resource_name("vm")
        self._register(
            "virtualMachine",
            compute.VirtualMachine(
                vm_name,
                vm_name=vm_name,
                resource_group_name=self.resource_group_name,
                location=p.location,
                hardware_profile=compute.HardwareProfileArgs(vm_size=p.vm_size),
                os_profile=compute.OSProfileArgs(
                    computer_name=vm_name,
                    admin_username=p.vm_admin_username,
                    admin_password=self.admin_password,
                    linux_configuration=compute.LinuxConfigurationArgs(
                        disable_password_authentication=False,
                    ),
                ),
                storage_profile=compute.StorageProfileArgs(
                    image_reference=compute.ImageReferenceArgs(**VM_IMAGE),
                    os_disk=compute.OSDiskArgs(
                        name=f"{vm_name}-osdisk",
                        create_option="FromImage",
                        managed_disk=compute.ManagedDiskParametersArgs(storage_account_type="Standard_LRS"),
                    ),
                ),
                network_profile=compute.NetworkProfileArgs(
                    network_interfaces=[compute.NetworkInterfaceReferenceArgs(id=nic.id, primary=True)],
                ),
                tags=p.tags,
            ),
            vm_name,
        )

    def outputs(self) -> Dict[str, Any]:
        public_ip = self.resources.get("publicIp")
        return {
            "vnetName": self.resources["vnet"].name,
            "storageAccountName": self.resources["storageAccount"].name,
            "privateEndpointId": self.resources["privateEndpoint"].id,
            "privateDnsZoneName": self.resources["privateDnsZone"].name,
            "testVmPublicIp": public_ip.ip_address if public_ip is not None else NOT_DEPLOYED,
        }
