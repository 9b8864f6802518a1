# config.py
"""
This module defines the parameter contract for the private storage network.
Parameters are read from a YAML file and converted into the TemplateParameters
dataclass, which validates them before any resource is declared.
"""

import ipaddress
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

ALLOWED_STORAGE_SKUS = ["Standard_LRS", "Standard_GRS", "Standard_RAGRS", "Standard_ZRS"]
ALLOWED_STORAGE_KINDS = ["StorageV2"]

STORAGE_ACCOUNT_NAME_PATTERN = re.compile(r"^[a-z0-9]{3,24}$")
ENVIRONMENT_PATTERN = re.compile(r"^[a-z0-9]+$")

# Azure rejects these as admin usernames on Linux VMs (full list from the Compute API).
RESERVED_ADMIN_USERNAMES = {
    "1", "123", "a", "actuser", "adm", "admin", "admin1", "admin2", "administrator",
    "aspnet", "backup", "console", "david", "guest", "john", "owner", "root", "server",
    "sql", "support", "support_388945a0", "sys", "test", "test1", "test2", "test3",
    "user", "user1", "user2", "user3", "user4", "user5",
}

MAX_SSH_CIDRS = 100

REQUIRED_KEYS = ["resourceGroupName", "location", "prefix", "environment", "storageAccountName"]


class ConfigError(ValueError):
    """Raised when the parameter file violates one or more constraints."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid configuration:\n  - " + "\n  - ".join(errors))


def load_config(file_path: str) -> Dict[str, Any]:
    """Load YAML configuration from the given file path and check required keys."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file)

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration file '{file_path}' must contain a mapping")

    for key in REQUIRED_KEYS:
        if key not in config_data:
            raise ValueError(f"Missing required configuration key: {key}")

    return config_data


def _password_classes(password: str) -> int:
    checks = [
        any(c.islower() for c in password),
        any(c.isupper() for c in password),
        any(c.isdigit() for c in password),
        any(not c.isalnum() for c in password),
    ]
    return sum(checks)


@dataclass
class TemplateParameters:
    resource_group_name: str
    location: str
    prefix: str
    environment: str
    storage_account_name: str
    create_resource_group: bool = True
    vnet_address_prefix: str = "10.10.0.0/16"
    service_endpoint_subnet_prefix: str = "10.10.1.0/24"
    private_endpoint_subnet_prefix: str = "10.10.2.0/24"
    vm_subnet_prefix: str = "10.10.3.0/24"
    storage_sku: str = "Standard_LRS"
    storage_kind: str = "StorageV2"
    storage_endpoint_suffix: str = "core.windows.net"
    deploy_test_vm: bool = False
    vm_admin_username: str = "azureuser"
    vm_admin_password: Optional[str] = field(default=None, repr=False)
    vm_size: str = "Standard_B1s"
    allowed_ssh_cidrs: List[str] = field(default_factory=list)
    tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateParameters":
        """Build parameters from a camelCase mapping, as found in config.yaml.

        YAML turns unquoted scalars such as ``123456`` or ``01`` into numbers, so
        string fields are coerced with ``str()``. Flags must be real booleans;
        ``'false'`` in quotes is rejected rather than treated as truthy.
        """
        errors = [f"'{key}' is required" for key in REQUIRED_KEYS if data.get(key) in (None, "")]

        field_types = {f.name: f.type for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            attr = re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()
            if attr not in field_types:
                errors.append(f"Unknown configuration key: {key}")
                continue
            if value is None:
                continue

            expected = field_types[attr]
            if expected is bool:
                if not isinstance(value, bool):
                    errors.append(f"{key} must be true or false, got {value!r}")
                    continue
            elif expected in (str, Optional[str]):
                if isinstance(value, (dict, list)):
                    errors.append(f"{key} must be a scalar value")
                    continue
                value = str(value)
            elif attr == "allowed_ssh_cidrs":
                if not isinstance(value, list):
                    errors.append(f"{key} must be a list")
                    continue
                value = [str(item) for item in value]
            elif attr == "tags":
                if not isinstance(value, dict):
                    errors.append(f"{key} must be a mapping")
                    continue
                value = {str(k): str(v) for k, v in value.items()}
            kwargs[attr] = value

        if errors:
            raise ConfigError(errors)

        params = cls(**kwargs)
        params.validate()
        return params

    def subnet_prefixes(self) -> Dict[str, str]:
        return {
            "serviceEndpointSubnetPrefix": self.service_endpoint_subnet_prefix,
            "privateEndpointSubnetPrefix": self.private_endpoint_subnet_prefix,
            "vmSubnetPrefix": self.vm_subnet_prefix,
        }

    def validate(self) -> None:
        errors = []

        if not 3 <= len(self.prefix) <= 10:
            errors.append(f"prefix '{self.prefix}' must be between 3 and 10 characters")
        if not ENVIRONMENT_PATTERN.match(self.environment):
            errors.append(f"environment '{self.environment}' must be lowercase alphanumeric")
        if not STORAGE_ACCOUNT_NAME_PATTERN.match(self.storage_account_name):
            errors.append(
                f"storageAccountName '{self.storage_account_name}' must be 3-24 lowercase letters or digits"
            )
        if self.storage_sku not in ALLOWED_STORAGE_SKUS:
            errors.append(f"storageSku '{self.storage_sku}' must be one of {ALLOWED_STORAGE_SKUS}")
        if self.storage_kind not in ALLOWED_STORAGE_KINDS:
            errors.append(f"storageKind '{self.storage_kind}' must be one of {ALLOWED_STORAGE_KINDS}")
        if not self.storage_endpoint_suffix:
            errors.append("storageEndpointSuffix must not be empty")

        errors.extend(self._validate_address_space())
        errors.extend(self._validate_test_vm())

        if errors:
            raise ConfigError(errors)

    def _validate_address_space(self) -> List[str]:
        errors = []
        try:
            vnet = ipaddress.ip_network(self.vnet_address_prefix)
        except ValueError as e:
            return [f"vnetAddressPrefix '{self.vnet_address_prefix}' is not a valid CIDR: {e}"]

        subnets = {}
        for key, prefix in self.subnet_prefixes().items():
            try:
                subnet = ipaddress.ip_network(prefix)
            except ValueError as e:
                errors.append(f"{key} '{prefix}' is not a valid CIDR: {e}")
                continue
            if subnet.version != vnet.version or not subnet.subnet_of(vnet):
                errors.append(f"{key} '{prefix}' is outside vnetAddressPrefix '{self.vnet_address_prefix}'")
            subnets[key] = subnet

        keys = list(subnets)
        for i, left in enumerate(keys):
            for right in keys[i + 1:]:
                if subnets[left].overlaps(subnets[right]):
                    errors.append(f"{left} '{subnets[left]}' overlaps {right} '{subnets[right]}'")
        return errors

    def _validate_test_vm(self) -> List[str]:
        errors = []

        if not isinstance(self.allowed_ssh_cidrs, list):
            return ["allowedSshCidrs must be a list"]
        if len(self.allowed_ssh_cidrs) > MAX_SSH_CIDRS:
            errors.append(f"allowedSshCidrs accepts at most {MAX_SSH_CIDRS} entries")
        for cidr in self.allowed_ssh_cidrs:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                errors.append(f"allowedSshCidrs entry '{cidr}' is not a valid CIDR")

        if not self.deploy_test_vm:
            return errors

        if not self.vm_admin_username:
            errors.append("vmAdminUsername must not be empty")
        elif self.vm_admin_username.lower() in RESERVED_ADMIN_USERNAMES:
            errors.append(f"vmAdminUsername '{self.vm_admin_username}' is reserved by Azure")

        # The password may be supplied later from a Pulumi secret.
        if self.vm_admin_password is not None:
            password = self.vm_admin_password
            if not 12 <= len(password) <= 123:
                errors.append("vmAdminPassword must be between 12 and 123 characters")
            elif _password_classes(password) < 3:
                errors.append(
                    "vmAdminPassword must contain 3 of: lowercase, uppercase, digit, special character"
                )
        return errors
