# src/asyncemit/wire_config.py
from __future__ import annotations
import importlib
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

import yaml  # PyYAML

from asyncemit.core import log
from asyncemit.core.emitter import AsyncEmitter

_log = log.get("wire_config")


class WiringError(ValueError):
    """Raised when a wiring file names something that cannot be used as a listener."""


def _imp(target: str) -> Callable[..., Any]:
    """Resolve "package.module:attr" (attr may be dotted) to a callable."""
    module, sep, attr = str(target).partition(":")
    if not sep or not module or not attr:
        raise WiringError(f"target must look like 'module:attr', got {target!r}")
    try:
        obj: Any = importlib.import_module(module)
        for part in attr.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise WiringError(f"cannot resolve {target!r}: {e}") from e
    if not callable(obj):
        raise WiringError(f"{target!r} is not callable")
    return obj


def _section(data: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    items = data.get(key) or []
    if not isinstance(items, list):
        raise WiringError(f"'{key}' must be a list, got {type(items).__name__}")
    for item in items:
        if not isinstance(item, Mapping):
            raise WiringError(f"'{key}' entries must be mappings, got {item!r}")
    return items


def build_from_dict(data: Mapping[str, Any] | None, *, name: str = "emitter") -> AsyncEmitter:
    """Build an emitter from an already-parsed wiring mapping."""
    data = data or {}
    if not isinstance(data, Mapping):
        raise WiringError(f"wiring must be a mapping, got {type(data).__name__}")

    hook = data.get("on_unhandled_error")
    emitter = AsyncEmitter(name=name, on_unhandled_error=_imp(hook) if hook else None)

    for item in _section(data, "listeners"):
        if "event" not in item or "target" not in item:
            raise WiringError(f"listener entry needs 'event' and 'target': {item!r}")
        emitter.subscribe(item["event"], _imp(item["target"]), bind=bool(item.get("bind", False)))

    for item in _section(data, "error_listeners"):
        if "target" not in item:
            raise WiringError(f"error listener entry needs 'target': {item!r}")
        emitter.subscribe_error(_imp(item["target"]), bind=bool(item.get("bind", False)))

    _log.info("wired emitter=%s events=%d", name, len(emitter.event_names()))
    return emitter


def build_from_yaml(yaml_path: str | Path, *, name: str = "emitter") -> AsyncEmitter:
    """Read a wiring YAML file and return a ready emitter."""
    data: Dict[str, Any] | None = yaml.safe_load(Path(yaml_path).read_text(encoding="utf-8"))
    if data is not None and not isinstance(data, dict):
        raise WiringError(f"{yaml_path}: top level must be a mapping")
    return build_from_dict(data, name=name)
