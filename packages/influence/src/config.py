"""YAML configuration for the influence engine.

A configuration file holds engine defaults under a section, by default
``influence``::

    influence:
      k: 3
      grid_points: 500
      eff: 0.95

Nested sections are addressed with dots, e.g. ``"research.influence"``.
"""

import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import InputValidationError
from .types import IFConfig

logger = logging.getLogger(__name__)


def load_config(path: str | Path) -> dict[str, Any]:
    """
    Read a YAML file into a mapping.

    Parameters
    ----------
    path : str | Path
        YAML file.

    Returns
    -------
    dict[str, Any]
        Top-level mapping; an empty file gives ``{}``.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    InputValidationError
        If the document is not a mapping.
    yaml.YAMLError
        If the YAML is malformed.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    document = yaml.safe_load(path.read_text())
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise InputValidationError(
            f"Configuration file must hold a mapping, got {type(document).__name__}: {path}"
        )
    return document


def config_section(config: dict[str, Any], section: str) -> dict[str, Any]:
    """
    Settings stored under a dotted section path.

    A missing section gives ``{}``; a section that is present but not a
    mapping raises ``InputValidationError``.

    Examples
    --------
    >>> config_section({"research": {"influence": {"k": 3}}}, "research.influence")
    {'k': 3}
    >>> config_section({"signals": {}}, "influence")
    {}
    """
    node: Any = config
    for part in section.split("."):
        if not isinstance(node, dict) or part not in node:
            return {}
        node = node[part]
    if node is None:
        return {}
    if not isinstance(node, dict):
        raise InputValidationError(
            f"Configuration section '{section}' must be a mapping, got {type(node).__name__}"
        )
    return node


def config_from_dict(values: dict[str, Any], base: IFConfig | None = None) -> IFConfig:
    """
    Overlay a mapping of settings onto an ``IFConfig``.

    Parameters
    ----------
    values : dict[str, Any]
        Setting names and values, e.g. ``{"k": 3, "eff": 0.95}``.
    base : IFConfig | None
        Starting configuration. Defaults to ``IFConfig()``.

    Returns
    -------
    IFConfig
        New configuration; ``base`` is not modified.

    Raises
    ------
    InputValidationError
        If ``values`` contains unknown setting names.
    """
    base = base if base is not None else IFConfig()
    known = {f.name for f in fields(IFConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise InputValidationError(
            f"Unknown configuration keys: {unknown}. Known keys: {sorted(known)}"
        )
    return replace(base, **values)


def config_from_yaml(path: str | Path, section: str = "influence") -> IFConfig:
    """
    Build an ``IFConfig`` from a YAML file.

    Parameters
    ----------
    path : str | Path
        YAML file path.
    section : str, default "influence"
        Dotted path of the section holding the settings. A missing
        section yields the defaults.

    Returns
    -------
    IFConfig
    """
    values = config_section(load_config(path), section)
    logger.debug("Loaded %d influence settings from %s [%s]", len(values), path, section)
    return config_from_dict(values)
