import os
import json
import types
import typing
import logging
import dataclasses
from typing import Any, Dict, Optional, Union

from ConfigHolder import ConfigHolder
from ConfigLoadError import ConfigLoadError, ErrorKind
from LoaderConfiguration import LoaderConfiguration, default_configuration

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

CONFIG_FILE_MODE = 0o644
MESSAGE_PREFIX = "JsonConfigFile: "

# JSON scalar checks keyed by field annotation. bool is a subclass of int, so it is excluded explicitly.
_UNION_ORIGINS = (Union, getattr(types, "UnionType", Union))

_SCALAR_CHECKS = {
    bool: lambda value: isinstance(value, bool),
    int: lambda value: isinstance(value, int) and not isinstance(value, bool),
    float: lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    str: lambda value: isinstance(value, str),
}


def _open_or_create(path: str, flags: int) -> int:
    # Ignores the flags derived from the mode string: always read/write, create if missing.
    return os.open(path, os.O_RDWR | os.O_CREAT, CONFIG_FILE_MODE)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _is_dataclass_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _is_dataclass_type(hint: Any) -> bool:
    return isinstance(hint, type) and dataclasses.is_dataclass(hint)


def _to_plain(value: Any) -> Any:
    if _is_dataclass_instance(value):
        return dataclasses.asdict(value)
    return value


def _type_name(hint: Any) -> str:
    return getattr(hint, "__name__", None) or str(hint)


def _check_fields(cls: type, data: Dict[str, Any], where: str, current: Any = None) -> None:
    """
    Raises ValueError if the JSON object ``data`` cannot be bound to dataclass ``cls``.

    Keys without a matching field are ignored. When there is no ``current``
    instance to load into, every required init field must be present.
    """
    hints = typing.get_type_hints(cls)
    for field in dataclasses.fields(cls):
        if field.name in data:
            nested = getattr(current, field.name, None) if current is not None else None
            _check_value(hints.get(field.name, Any), data[field.name], f"{where}.{field.name}", nested)
        elif current is None and field.init and field.default is dataclasses.MISSING \
                and field.default_factory is dataclasses.MISSING:
            raise ValueError(f"{where}.{field.name}: missing required field")


def _check_value(hint: Any, value: Any, where: str, current: Any = None) -> None:
    """Raises ValueError if the JSON ``value`` does not fit the annotation ``hint``."""
    if hint is Any:
        return
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)

    if origin in _UNION_ORIGINS:
        for arm in args:
            try:
                _check_value(arm, value, where, current)
                return
            except ValueError:
                continue
        raise ValueError(f"{where}: JSON {type(value).__name__} does not match {hint}")
    if hint is type(None):
        if value is not None:
            raise ValueError(f"{where}: expected null, got JSON {type(value).__name__}")
        return
    if _is_dataclass_type(hint):
        if not isinstance(value, dict):
            raise ValueError(f"{where}: expected a JSON object for {hint.__name__}, got {type(value).__name__}")
        _check_fields(hint, value, where, current if isinstance(current, hint) else None)
        return
    if hint is list or origin is list:
        if not isinstance(value, list):
            raise ValueError(f"{where}: expected a JSON array, got {type(value).__name__}")
        if args:
            for index, item in enumerate(value):
                _check_value(args[0], item, f"{where}[{index}]")
        return
    if hint is dict or origin is dict:
        if not isinstance(value, dict):
            raise ValueError(f"{where}: expected a JSON object, got {type(value).__name__}")
        if len(args) == 2:
            for key, item in value.items():
                _check_value(args[1], item, f"{where}[{key!r}]")
        return
    check = _SCALAR_CHECKS.get(hint)
    if check is not None and not check(value):
        raise ValueError(f"{where}: expected {_type_name(hint)}, got JSON {type(value).__name__}")


def _assign_fields(target: Any, data: Dict[str, Any]) -> None:
    hints = typing.get_type_hints(type(target))
    for field in dataclasses.fields(target):
        if field.name in data:
            current = getattr(target, field.name)
            setattr(target, field.name, _convert(hints.get(field.name, Any), data[field.name], current))


def _convert(hint: Any, value: Any, current: Any = None) -> Any:
    """Builds the Python value for an already checked JSON ``value``."""
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)

    if origin in _UNION_ORIGINS:
        for arm in args:
            try:
                _check_value(arm, value, "", current)
            except ValueError:
                continue
            return _convert(arm, value, current)
        return value
    if _is_dataclass_type(hint) and isinstance(value, dict):
        if isinstance(current, hint) and not current.__dataclass_params__.frozen:
            _assign_fields(current, value)
            return current
        hints = typing.get_type_hints(hint)
        values = {
            field.name: _convert(hints.get(field.name, Any), value[field.name], getattr(current, field.name, None))
            for field in dataclasses.fields(hint)
            if field.name in value and field.init
        }
        if isinstance(current, hint):
            return dataclasses.replace(current, **values)
        return hint(**values)
    if (hint is list or origin is list) and args:
        return [_convert(args[0], item) for item in value]
    if (hint is dict or origin is dict) and len(args) == 2:
        return {key: _convert(args[1], item) for key, item in value.items()}
    if hint is float and isinstance(value, int):
        return float(value)
    return value


class ConfigLoader:
    """
    Loads a JSON configuration file into a caller-supplied output target.

    The file is opened for reading and writing (created with mode 0644 when it
    does not exist) and parsed into the target. When parsing fails, the loader
    falls back to ``configuration.config_default`` and, if
    ``configuration.erase_on_fail`` is set, rewrites the file with that default.

    Supported output targets are updated in place so the caller's reference
    sees the result:

    * ``dict``: cleared and updated; the document must be a JSON object.
    * ``list``: contents replaced; the document must be a JSON array.
    * :class:`ConfigHolder`: ``value`` replaced by any JSON document.
    * dataclass instance: fields set from a JSON object, unknown keys ignored.
      Values must match the field annotations; nested dataclass fields are
      loaded as instances of their declared type.

    A document whose shape does not fit the target is handled like a parse
    failure. The target is never touched when a load fails outright.

    :ivar configuration: The options used by :meth:`load`.
    """

    def __init__(self, configuration: Optional[LoaderConfiguration] = None):
        """
        :param configuration: Loader options. ``None`` uses
                              :func:`default_configuration`.
        :type configuration: Optional[LoaderConfiguration]
        """
        self.configuration: LoaderConfiguration = (
            configuration if configuration is not None else default_configuration()
        )

    def load(self, output_target: Any) -> Optional[ConfigLoadError]:
        """
        Loads the configuration file into ``output_target``.

        :param output_target: Mutable object receiving the configuration.
        :type output_target: dict | list | ConfigHolder | dataclass instance
        :return: None on success, otherwise a :class:`ConfigLoadError`. The
                 ``RESET`` and ``DEFAULT_APPLIED`` kinds mean the target holds
                 the default value and can be used.
        :rtype: Optional[ConfigLoadError]
        :raises TypeError: If ``output_target`` is not a supported target type.
        """
        self._check_target(output_target)
        path = self.configuration.path

        try:
            config_file = open(path, 'r+b', opener=_open_or_create)
        except OSError as e:
            logger.error(f"Config file could not be created or opened: {path}: {e}")
            error = ConfigLoadError(ErrorKind.OPEN, MESSAGE_PREFIX + "Config file could not be created or open", e)
            error.add_detail("path", path)
            error.add_detail("error", e)
            return error

        with config_file:
            try:
                raw = config_file.read()
            except OSError as e:
                logger.error(f"Failed to read config file {path}: {e}")
                error = ConfigLoadError(ErrorKind.READ, MESSAGE_PREFIX + "Fail to read file already opened", e)
                error.add_detail("path", path)
                error.add_detail("error", e)
                return error

            try:
                data = json.loads(raw.decode('utf-8'), parse_constant=_reject_constant)
                self._check_shape(output_target, data)
            except ValueError as e:  # JSONDecodeError, UnicodeDecodeError and shape mismatches
                logger.debug(f"Config file {path} could not be parsed: {e}")
                return self._fall_back(config_file, output_target, e)

            self._assign(output_target, data)

        logger.info("Configuration loaded successfully.")
        return None

    def _fall_back(self, config_file, output_target: Any, parse_error: ValueError) -> Optional[ConfigLoadError]:
        """
        Applies the default value after ``parse_error``.

        :param config_file: The open config file, positioned anywhere.
        :param output_target: The target that failed to load.
        :param parse_error: Why the file contents were rejected.
        :type parse_error: ValueError
        :return: The error describing the fallback outcome.
        :rtype: Optional[ConfigLoadError]
        """
        path = self.configuration.path
        erase_on_fail = self.configuration.erase_on_fail
        default = self.configuration.config_default

        if default is None and not erase_on_fail:
            error = ConfigLoadError(ErrorKind.DEFAULT_NIL, MESSAGE_PREFIX + "No default value set", parse_error)
            error.add_detail("path", path)
            return error
        if default is None:
            # The untouched target doubles as the default.
            default = self._snapshot(output_target)

        try:
            encoded = json.dumps(_to_plain(default), allow_nan=False)
            restored = json.loads(encoded)
            self._check_shape(output_target, restored)
        except (TypeError, ValueError) as e:
            logger.error(f"Default configuration for {path} could not be serialized: {e}")
            error = ConfigLoadError(ErrorKind.DEFAULT_FAIL_MARSHAL, MESSAGE_PREFIX + "Fail to marshal Json", e)
            error.add_detail("path", path)
            error.add_detail("error", e)
            return error

        if not erase_on_fail:
            self._assign(output_target, restored)
            logger.warning(f"Config file {path} is invalid; using default configuration without erasing it.")
            error = ConfigLoadError(
                ErrorKind.DEFAULT_APPLIED,
                MESSAGE_PREFIX + "Config json invalid, default applied without erasing",
                parse_error,
            )
            error.add_detail("path", path)
            return error

        try:
            config_file.truncate(0)
            config_file.seek(0)
            config_file.write(encoded.encode('utf-8'))
            config_file.flush()
        except OSError as e:
            logger.error(f"Failed to write default configuration to {path}: {e}")
            error = ConfigLoadError(ErrorKind.WRITE, MESSAGE_PREFIX + "Fail to write default config", e)
            error.add_detail("path", path)
            error.add_detail("error", e)
            return error

        self._assign(output_target, restored)
        logger.warning(f"Config file {path} reset to default configuration.")
        error = ConfigLoadError(ErrorKind.RESET, MESSAGE_PREFIX + "Config json reset to default", parse_error)
        error.add_detail("path", path)
        return error

    @staticmethod
    def _check_target(output_target: Any) -> None:
        if isinstance(output_target, (ConfigHolder, dict, list)):
            return
        if _is_dataclass_instance(output_target):
            if output_target.__dataclass_params__.frozen:
                raise TypeError(f"Cannot load configuration into frozen dataclass {type(output_target).__name__}")
            return
        raise TypeError(
            f"Unsupported output target {type(output_target).__name__}; "
            "use a dict, list, dataclass instance or ConfigHolder"
        )

    @staticmethod
    def _check_shape(output_target: Any, data: Any) -> None:
        """
        Raises ValueError if ``data`` cannot be assigned to ``output_target``.
        """
        if isinstance(output_target, ConfigHolder):
            return
        if isinstance(output_target, list):
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            return
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        if _is_dataclass_instance(output_target):
            _check_fields(type(output_target), data, type(output_target).__name__, output_target)

    @staticmethod
    def _assign(output_target: Any, data: Any) -> None:
        if isinstance(output_target, ConfigHolder):
            output_target.value = data
        elif isinstance(output_target, dict):
            output_target.clear()
            output_target.update(data)
        elif isinstance(output_target, list):
            output_target[:] = data
        else:
            _assign_fields(output_target, data)

    @staticmethod
    def _snapshot(output_target: Any) -> Any:
        if isinstance(output_target, ConfigHolder):
            return output_target.value
        return _to_plain(output_target)


def load_config(configuration: Optional[LoaderConfiguration], output_target: Any) -> Optional[ConfigLoadError]:
    """
    Loads a JSON configuration file into ``output_target``.

    Shortcut for ``ConfigLoader(configuration).load(output_target)``.

    :param configuration: Loader options, or None for the defaults
                          (``config.json``, erase on fail, no default value).
    :type configuration: Optional[LoaderConfiguration]
    :param output_target: Mutable object receiving the configuration.
    :return: None on success, otherwise a :class:`ConfigLoadError`.
    :rtype: Optional[ConfigLoadError]
    """
    return ConfigLoader(configuration).load(output_target)
