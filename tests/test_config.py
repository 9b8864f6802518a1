"""Tests for loading and validating the template parameters."""

from typing import Any, Dict

import pytest
import yaml

from config import ConfigError, TemplateParameters, load_config


@pytest.fixture
def base_config() -> Dict[str, Any]:
    return {
        "resourceGroupName": "rg-pstor-dev",
        "location": "eastus",
        "prefix": "pstor",
        "environment": "dev",
        "storageAccountName": "pstordevdata01",
    }


def test_defaults_are_applied(base_config):
    params = TemplateParameters.from_dict(base_config)

    assert params.create_resource_group is True
    assert params.vnet_address_prefix == "10.10.0.0/16"
    assert params.storage_sku == "Standard_LRS"
    assert params.storage_kind == "StorageV2"
    assert params.storage_endpoint_suffix == "core.windows.net"
    assert params.deploy_test_vm is False
    assert params.allowed_ssh_cidrs == []
    assert params.tags == {}


def test_camel_case_keys_map_to_fields(base_config):
    base_config.update(
        {
            "storageSku": "Standard_ZRS",
            "deployTestVm": True,
            "vmAdminPassword": "Sup3r-Secret-Pass",
            "allowedSshCidrs": ["203.0.113.0/24", "198.51.100.7/32"],
            "tags": {"owner": "platform"},
        }
    )

    params = TemplateParameters.from_dict(base_config)

    assert params.storage_sku == "Standard_ZRS"
    assert params.deploy_test_vm is True
    assert params.allowed_ssh_cidrs == ["203.0.113.0/24", "198.51.100.7/32"]
    assert params.tags == {"owner": "platform"}


def test_password_is_hidden_from_repr(base_config):
    base_config["vmAdminPassword"] = "Sup3r-Secret-Pass"
    params = TemplateParameters.from_dict(base_config)

    assert "Sup3r-Secret-Pass" not in repr(params)


@pytest.mark.parametrize("key", ["resourceGroupName", "location", "prefix", "environment", "storageAccountName"])
def test_missing_required_key(base_config, key):
    del base_config[key]

    with pytest.raises(ConfigError, match=key):
        TemplateParameters.from_dict(base_config)


def test_unknown_key_is_rejected(base_config):
    base_config["storageTier"] = "Hot"

    with pytest.raises(ConfigError, match="storageTier"):
        TemplateParameters.from_dict(base_config)


@pytest.mark.parametrize(
    "override, message",
    [
        ({"prefix": "ab"}, "prefix"),
        ({"prefix": "abcdefghijk"}, "prefix"),
        ({"environment": "Dev-1"}, "environment"),
        ({"storageAccountName": "Has-Dashes"}, "storageAccountName"),
        ({"storageAccountName": "a" * 25}, "storageAccountName"),
        ({"storageSku": "Premium_LRS"}, "storageSku"),
        ({"storageKind": "BlobStorage"}, "storageKind"),
        ({"vnetAddressPrefix": "10.10.0.0/33"}, "vnetAddressPrefix"),
        ({"vmSubnetPrefix": "192.168.0.0/24"}, "outside vnetAddressPrefix"),
        ({"vmSubnetPrefix": "10.10.1.128/25"}, "overlaps"),
        ({"allowedSshCidrs": ["not-a-cidr"]}, "allowedSshCidrs"),
        ({"allowedSshCidrs": ["10.0.0.0/32"] * 101}, "at most"),
    ],
)
def test_constraint_violations(base_config, override, message):
    base_config.update(override)

    with pytest.raises(ConfigError, match=message):
        TemplateParameters.from_dict(base_config)


def test_all_violations_are_reported(base_config):
    base_config.update({"prefix": "ab", "storageSku": "Premium_LRS", "storageKind": "BlobStorage"})

    with pytest.raises(ConfigError) as excinfo:
        TemplateParameters.from_dict(base_config)

    assert len(excinfo.value.errors) == 3


@pytest.mark.parametrize(
    "password",
    [
        "Short1!",
        "alllowercaseletters",
        "NoDigitsOrSymbols",
    ],
)
def test_weak_vm_password_is_rejected(base_config, password):
    base_config.update({"deployTestVm": True, "vmAdminPassword": password})

    with pytest.raises(ConfigError, match="vmAdminPassword"):
        TemplateParameters.from_dict(base_config)


def test_reserved_admin_username_is_rejected(base_config):
    base_config.update({"deployTestVm": True, "vmAdminUsername": "root"})

    with pytest.raises(ConfigError, match="reserved"):
        TemplateParameters.from_dict(base_config)


def test_vm_settings_are_ignored_without_test_vm(base_config):
    base_config.update({"vmAdminUsername": "root", "vmAdminPassword": "weak"})

    params = TemplateParameters.from_dict(base_config)

    assert params.deploy_test_vm is False


def test_load_config_reads_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "resourceGroupName: rg-pstor-dev\n"
        "location: westeurope\n"
        "prefix: pstor\n"
        "environment: test\n"
        "storageAccountName: pstortest01\n"
        "allowedSshCidrs:\n"
        "  - 203.0.113.0/24\n"
    )

    config_data = load_config(str(config_file))

    assert config_data["location"] == "westeurope"
    assert config_data["allowedSshCidrs"] == ["203.0.113.0/24"]


def test_load_config_missing_key(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("location: eastus\n")

    with pytest.raises(ValueError, match="Missing required configuration key"):
        load_config(str(config_file))


def test_load_config_requires_mapping(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("- just\n- a list\n")

    with pytest.raises(ValueError, match="must contain a mapping"):
        load_config(str(config_file))


def test_numeric_yaml_scalars_become_strings(base_config):
    loaded = yaml.safe_load("storageAccountName: 123456\nenvironment: 01\nprefix: 2024\n")
    base_config.update(loaded)

    params = TemplateParameters.from_dict(base_config)

    assert params.storage_account_name == "123456"
    assert params.environment == "1"
    assert params.prefix == "2024"


def test_quoted_boolean_flag_is_rejected(base_config):
    base_config.update(yaml.safe_load("deployTestVm: 'false'\ncreateResourceGroup: 'yes'\n"))

    with pytest.raises(ConfigError) as excinfo:
        TemplateParameters.from_dict(base_config)

    assert len(excinfo.value.errors) == 2
    assert all("must be true or false" in error for error in excinfo.value.errors)


@pytest.mark.parametrize(
    "override, message",
    [
        ({"allowedSshCidrs": "203.0.113.0/24"}, "must be a list"),
        ({"tags": ["owner"]}, "must be a mapping"),
        ({"location": ["eastus"]}, "must be a scalar"),
    ],
)
def test_wrong_container_types_are_rejected(base_config, override, message):
    base_config.update(override)

    with pytest.raises(ConfigError, match=message):
        TemplateParameters.from_dict(base_config)


def test_unknown_keys_are_reported_together(base_config):
    base_config.update({"storageTier": "Hot", "vnetName": "custom"})
    del base_config["prefix"]

    with pytest.raises(ConfigError) as excinfo:
        TemplateParameters.from_dict(base_config)

    assert excinfo.value.errors == [
        "'prefix' is required",
        "Unknown configuration key: storageTier",
        "Unknown configuration key: vnetName",
    ]


@pytest.mark.parametrize("username", ["a", "actuser", "aspnet", "david", "john", "Admin1"])
def test_all_reserved_admin_usernames_are_rejected(base_config, username):
    base_config.update({"deployTestVm": True, "vmAdminUsername": username})

    with pytest.raises(ConfigError, match="reserved"):
        TemplateParameters.from_dict(base_config)
