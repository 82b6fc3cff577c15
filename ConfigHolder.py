from typing import Any


class ConfigHolder:
    """
    Mutable box for a configuration value that cannot be updated in place.

    Use it as the output target when the expected document is a scalar, or
    when the caller does not know its shape in advance. The loaded value
    replaces ``value`` whatever its JSON type.
    """

    def __init__(self, value: Any = None):
        self.value = value

    def __eq__(self, other):
        if not isinstance(other, ConfigHolder):
            return NotImplemented
        return self.value == other.value

    def __repr__(self):
        return f"ConfigHolder({self.value!r})"
