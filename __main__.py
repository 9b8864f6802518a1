# main.py
import pulumi
from config import TemplateParameters, load_config
from privatestorage import PrivateStorageBuilder

DEFAULT_CONFIG_FILE = "config.yaml"


def main():
    stack_config = pulumi.Config()

    # Load YAML parameters; the stack can point at another file via `configFile`.
    config_file = stack_config.get("configFile") or DEFAULT_CONFIG_FILE
    try:
        config_data = load_config(config_file)
    except Exception as e:
        pulumi.log.error(f"Failed to load configuration file '{config_file}': {e}")
        raise

    try:
        params = TemplateParameters.from_dict(config_data)
    except ValueError as e:
        pulumi.log.error(f"Invalid parameters in '{config_file}': {e}")
        raise

    # A stack secret takes precedence over a password in the parameter file. It is read
    # in plain text so the password rules apply; the builder wraps it as a secret again.
    try:
        builder = PrivateStorageBuilder(params, admin_password=stack_config.get("vmAdminPassword"))
    except Exception as e:
        pulumi.log.error(f"Failed to initialize PrivateStorageBuilder: {e}")
        raise

    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    for name, value in builder.outputs().items():
        try:
            pulumi.export(name, value)
        except Exception as e:
            pulumi.log.warn(f"Failed to export output '{name}': {e}")


if __name__ == "__main__":
    main()
