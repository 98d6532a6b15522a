"""
Path access over JSON-like trees.

Paths use the dotted form webhook payloads are documented in, with optional
list indexes: ``task.stored_data.foo`` or ``send_messages[0].subject``.
The merge-vs-replace rule every envelope read and write goes through also
lives here.
"""

import re
from typing import Any, List, Union


class _Missing:
    """Marker for "nothing is stored at this path"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()

PathKey = Union[str, int]

_SEGMENT = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def split_path(path: Union[str, List[PathKey]]) -> List[PathKey]:
    """Split ``a.b[0].c`` into ``['a', 'b', 0, 'c']``."""
    if isinstance(path, (list, tuple)):
        return list(path)
    if not isinstance(path, str):
        raise TypeError(f"Path must be a string, got {type(path).__name__}")

    keys: List[PathKey] = []
    for name, index in _SEGMENT.findall(path):
        keys.append(int(index) if index else name)
    return keys


def is_mergeable(value: Any) -> bool:
    """Only plain mappings are ever shallow-merged; lists and scalars are replaced."""
    return isinstance(value, dict)


def _step(node: Any, key: PathKey) -> Any:
    if isinstance(node, dict):
        return node.get(key, MISSING) if isinstance(key, str) else node.get(str(key), MISSING)
    if isinstance(node, list) and isinstance(key, int):
        return node[key] if 0 <= key < len(node) else MISSING
    return MISSING


def get_path(tree: Any, path: Union[str, List[PathKey]], default: Any = MISSING) -> Any:
    """Return the value stored at ``path`` or ``default`` if any segment is absent."""
    node = tree
    for key in split_path(path):
        node = _step(node, key)
        if node is MISSING:
            return default
    return node


def has_path(tree: Any, path: Union[str, List[PathKey]]) -> bool:
    """True if ``path`` was written, even when the stored value is falsy."""
    return get_path(tree, path) is not MISSING


def _empty_container_for(key: PathKey) -> Any:
    return [] if isinstance(key, int) else {}


def set_path(tree: dict, path: Union[str, List[PathKey]], value: Any) -> Any:
    """
    Write ``value`` at ``path``, creating intermediate containers.

    Intermediate values that cannot hold the next key (scalars, ``None``)
    are replaced by a fresh dict or list. The previous value at ``path`` is
    discarded outright; callers decide beforehand whether to merge.
    """
    keys = split_path(path)
    if not keys:
        raise ValueError("Cannot set an empty path")

    node = tree
    for key, next_key in zip(keys, keys[1:]):
        child = _step(node, key)
        if not isinstance(child, (dict, list)) or (isinstance(child, list) and not isinstance(next_key, int)):
            child = _empty_container_for(next_key)
            _assign(node, key, child)
        node = child

    _assign(node, keys[-1], value)
    return value


def _assign(node: Any, key: PathKey, value: Any) -> None:
    if isinstance(node, list):
        if not isinstance(key, int):
            raise TypeError(f"Cannot use key {key!r} on a list")
        while len(node) <= key:
            node.append(None)
        node[key] = value
    else:
        node[key if isinstance(key, str) else str(key)] = value


def resolve(pending: Any, original: Any, default: Any = None) -> Any:
    """
    Combine a pending (outgoing) value with the original (incoming) one.

    Two mappings merge shallowly with pending keys winning. Otherwise a
    written pending value wins even if falsy, then the original, then
    ``default``.
    """
    if is_mergeable(original) and is_mergeable(pending):
        return {**original, **pending}
    if pending is not MISSING:
        return pending
    if original is not MISSING:
        return original
    return default


def combine(existing: Any, value: Any, merge: bool = True) -> Any:
    """The value a write should store given what is already there."""
    if merge and is_mergeable(existing) and is_mergeable(value):
        return {**existing, **value}
    return value
