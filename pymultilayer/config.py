from typing import Any, Mapping, Iterator, List, Optional
import collections.abc
import logging

import yaml


class Node(collections.abc.Mapping):
    """Read-only view of a (nested) configuration mapping. Nested values can be
    accessed with a path, e.g., ``node["viscosity/nu"]``. Every retrieved key is
    recorded, so that :meth:`check` can report settings that were never used.
    """

    def __init__(self, dictionary: Mapping[str, Any], prefix: str = ""):
        self.prefix = prefix
        assert isinstance(dictionary, Mapping)
        self.dictionary = {}
        for name, value in dictionary.items():
            if isinstance(value, Mapping):
                value = Node(value, prefix="%s%s/" % (self.prefix, name))
            self.dictionary[name] = value
        self.retrieved = set()

    def __getitem__(self, path: str):
        components = path.split("/", 1)
        value = self.dictionary[components[0]]
        self.retrieved.add(components[0])
        if len(components) > 1:
            assert isinstance(value, Node)
            value = value[components[1]]
        return value

    def __iter__(self) -> Iterator:
        return self.dictionary.__iter__()

    def __len__(self) -> int:
        return self.dictionary.__len__()

    def check(self) -> List[str]:
        """Return the paths of all settings that have not been retrieved"""
        unused = []
        for name, value in self.dictionary.items():
            if name not in self.retrieved:
                unused.append("%s%s" % (self.prefix, name))
            elif isinstance(value, Node):
                unused += value.check()
        return unused

    def get_setting(
        self,
        name: str,
        default: Any = None,
        logger: Optional[logging.Logger] = None,
    ) -> Any:
        """Return the value of a setting, or ``default`` if it is absent.
        The value used is written to the log if a logger is provided.
        """
        value = self.get(name, default)
        if logger is not None:
            logger.info("%s%s = %s" % (self.prefix, name, value))
        return value

    def get_pair(
        self,
        name: str,
        default: Any = 0.0,
        logger: Optional[logging.Logger] = None,
    ) -> tuple:
        """Return a setting that has an x and a y component. It may be specified as
        a single value (used for both components), a list of two values, or a
        mapping with keys ``x`` and ``y``.
        """
        value = self.get(name, default)
        if isinstance(value, Node):
            value = (value.get("x", default), value.get("y", default))
        elif isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise Exception(
                    "%s%s must have 2 values (x, y), but has %i"
                    % (self.prefix, name, len(value))
                )
            value = tuple(value)
        else:
            value = (value, value)
        if logger is not None:
            logger.info("%s%s = %s" % (self.prefix, name, value))
        return value


def configure(path: str) -> Node:
    with open(path) as f:
        settings = yaml.safe_load(f)
    if not isinstance(settings, Mapping):
        raise Exception(
            "%s should contain a mapping with configuration information,"
            " but instead contains %s" % (path, settings)
        )
    return Node(settings)
