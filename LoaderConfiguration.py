from dataclasses import dataclass
from typing import Any

DEFAULT_CONFIG_PATH = "config.json"


@dataclass
class LoaderConfiguration:
    """
    Options controlling how a JSON configuration file is loaded.

    :ivar path: Location of the JSON config file. Created if absent.
    :ivar erase_on_fail: When True, a file that fails to parse is overwritten
                         with the serialized default value.
    :ivar config_default: Value used when parsing fails. Must be serializable
                          to JSON (dataclass instances are accepted). May be None.
    """
    path: str = DEFAULT_CONFIG_PATH
    erase_on_fail: bool = True
    config_default: Any = None


def default_configuration() -> LoaderConfiguration:
    """Returns a fresh configuration with the default options."""
    return LoaderConfiguration()
