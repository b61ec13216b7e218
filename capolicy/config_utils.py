"""
Helpers to build configuration objects from parsed YAML.

Keys in configuration documents may be spelled with dashes or with
underscores (``crl-validity-hours`` and ``crl_validity_hours`` are the same
key). Internally, everything is converted to underscores; error messages
use dashes.
"""

import dataclasses
import logging
import os
import os.path
from collections.abc import Callable, Mapping

from .common import (
    ConfigurationError,
    InvalidArgumentShape,
    InvalidRootPath,
)

__all__ = [
    'ConfigurableMixin', 'check_config_keys', 'require_mapping',
    'key_dashes_to_underscores', 'get_and_apply', 'SearchDir',
]

logger = logging.getLogger(__name__)


def key_dashes_to_underscores(config_dict):
    return {
        key.replace('-', '_'): v for key, v in config_dict.items()
    }


def require_mapping(config_name, config_dict):
    if not isinstance(config_dict, Mapping):
        raise InvalidArgumentShape(
            f"{config_name} requires a dictionary to initialise, "
            f"not {type(config_dict).__name__}."
        )
    return config_dict


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """Mixin for dataclasses that can be loaded from a YAML mapping."""

    @classmethod
    def configurable_fields(cls):
        """
        Names of the dataclass fields that can be set from configuration.
        Fields with ``configurable=False`` in their metadata are left out.
        """
        return {
            f.name for f in dataclasses.fields(cls)
            if f.metadata.get('configurable', True)
        }

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook to convert raw configuration values into the objects the
        initialiser expects. Works in place on ``config_dict``, whose keys
        have already been normalised to underscores.

        Overrides should call ``super().process_entries()`` and leave
        unknown keys alone.

        :raises ConfigurationError:
            if a value cannot be converted.
        """
        pass

    @classmethod
    def from_config(cls, config_dict, **kwargs):
        """
        Instantiate the class from a configuration mapping.

        Keys that do not correspond to a configurable field are rejected.
        The remaining entries go through :meth:`process_entries`, and are
        then passed to the initialiser together with ``kwargs``.

        :raises ConfigurationError:
            on unexpected keys, or on values that fail to convert.
        """
        check_config_keys(
            cls.__name__, cls.configurable_fields(), config_dict
        )
        config_dict = key_dashes_to_underscores(config_dict)
        cls.process_entries(config_dict)
        try:
            return cls(**config_dict, **kwargs)
        except TypeError as e:  # pragma: nocover
            raise ConfigurationError(e) from e


def check_config_keys(config_name, expected_keys, config_dict):
    # keys are reported with dashes, the way they appear in YAML
    require_mapping(config_name, config_dict)
    provided_keys = {key.replace('_', '-') for key in config_dict.keys()}
    expected_keys = {key.replace('_', '-') for key in expected_keys}
    unexpected_keys = provided_keys - expected_keys
    if unexpected_keys:
        raise ConfigurationError(
            f"Unexpected {'key' if len(unexpected_keys) == 1 else 'keys'} "
            f"in configuration for {config_name}: "
            f"{','.join(sorted(unexpected_keys))}."
        )


def get_and_apply(dictionary: dict, key, function: Callable, *, default=None):
    """
    Apply ``function`` to ``dictionary[key]``, or return ``default`` if
    the key is absent or set to ``None``.
    """
    value = dictionary.get(key, None)
    if value is None:
        return default
    return function(value)


class SearchDir:
    """
    Root directory against which relative paths in a configuration
    document are resolved. Absolute paths are taken as-is.
    """

    root_path: str

    def __init__(self, root_path: str):
        root_path = os.path.abspath(os.fspath(root_path))
        if not os.path.isdir(root_path):
            raise InvalidRootPath(
                f"ca_root_path is not a directory: {root_path}"
            )
        self.root_path = root_path

    @classmethod
    def from_optional(cls, root_path=None) -> 'SearchDir':
        if isinstance(root_path, SearchDir):
            return root_path
        return cls(os.getcwd() if root_path is None else root_path)

    def resolve(self, path) -> str:
        if not isinstance(path, (str, os.PathLike)):
            raise InvalidArgumentShape(
                f"Expected a file path, not {type(path).__name__}."
            )
        return os.path.abspath(os.path.join(self.root_path, path))

    def search_subdir(self, path) -> 'SearchDir':
        return SearchDir(self.resolve(path))

    def read_bytes(self, path) -> bytes:
        full_path = self.resolve(path)
        logger.debug(f"Reading {full_path}...")
        try:
            with open(full_path, 'rb') as inf:
                return inf.read()
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read {full_path}: {e}"
            ) from e

    def __repr__(self):
        return f"SearchDir('{self.root_path}')"

    def __str__(self):
        return self.root_path
