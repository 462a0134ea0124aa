"""
Structural diff engine for history snapshots.

Diffs are RFC 6902 JSON Patch operation lists produced and applied by the
jsonpatch library. The engine adds one thing on top of jsonpatch: objects
inside arrays are matched by identity (see object_hash) so that an
identified object that changed position is recorded as a "move" rather
than as field-by-field rewrites of whatever now sits at its old index.

Invariants:
    - patch(left, diff(left, right)) == right
    - Inputs are canonicalized (sorted keys) before diffing, so the same
      pair of snapshots yields the same diff whatever their key order
    - Neither diff() nor patch() mutates its arguments
    - An empty diff is the empty operation list

How to change safely:
    - Stored diffs must stay applicable; never change the op format
    - Changes to the identity rule only affect newly written diffs
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, List, Protocol, runtime_checkable

import jsonpatch
import jsonpointer

from ..errors import DiffError

logger = logging.getLogger(__name__)

INDEX_PREFIX = "$$index:"

# Keys checked, in priority order, to identify an object inside an array
IDENTITY_KEYS = ("_id", "id", "key")

Diff = List[dict]


def object_hash(obj: Any, index: int) -> str:
    """Identity of an array element for matching across snapshots.

    Objects are identified by the string form of ``_id``, else ``id``,
    else ``key``. Anything else is identified by position.

    Args:
        obj: Array element
        index: Element position in its array

    Returns:
        Identity string; positional identities start with ``$$index:``
    """
    if isinstance(obj, dict):
        for name in IDENTITY_KEYS:
            value = obj.get(name)
            if value:
                return str(value)
    return f"{INDEX_PREFIX}{index}"


@runtime_checkable
class DiffEngine(Protocol):
    """Protocol for pluggable diff/patch engines."""

    def diff(self, left: Any, right: Any) -> Any:
        """Compute the diff turning ``left`` into ``right``."""
        ...

    def patch(self, state: Any, diff: Any) -> Any:
        """Apply ``diff`` to ``state`` and return the new state."""
        ...

    def is_empty(self, diff: Any) -> bool:
        """Whether ``diff`` describes no change."""
        ...


class JsonPatchDiffEngine:
    """DiffEngine backed by jsonpatch with identity-aware array moves.

    Example:
        >>> engine = JsonPatchDiffEngine()
        >>> ops = engine.diff({"size": "small"}, {"size": "large"})
        >>> ops
        [{'op': 'replace', 'path': '/size', 'value': 'large'}]
        >>> engine.patch({"size": "small"}, ops)
        {'size': 'large'}
    """

    def diff(self, left: Any, right: Any) -> Diff:
        """Compute an operation list turning ``left`` into ``right``.

        Raises:
            DiffError: If either side is not JSON-serializable
        """
        try:
            working = _canonical(left)
            target = _canonical(right)
        except (TypeError, ValueError) as e:
            raise DiffError(f"Snapshot is not JSON-serializable: {e}") from e

        moves: Diff = []
        self._align(working, target, [], moves)

        rest = jsonpatch.make_patch(working, target)
        return moves + list(rest.patch)

    def patch(self, state: Any, diff: Diff) -> Any:
        """Apply an operation list to a copy of ``state``.

        Raises:
            DiffError: If the operations do not apply to ``state``
        """
        try:
            return jsonpatch.apply_patch(copy.deepcopy(state), diff, in_place=True)
        except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException) as e:
            raise DiffError(f"Diff does not apply: {e}") from e

    def is_empty(self, diff: Any) -> bool:
        return not diff

    def _align(self, src: Any, dst: Any, parts: list, ops: Diff) -> None:
        """Reorder identified array elements of ``src`` in place to match ``dst``.

        Every reorder is recorded as a move operation, so that applying
        ``ops`` to the original ``src`` reproduces the aligned ``src``.
        """
        if isinstance(src, dict) and isinstance(dst, dict):
            for key in sorted(src.keys() & dst.keys()):
                self._align(src[key], dst[key], parts + [key], ops)
            return

        if not (isinstance(src, list) and isinstance(dst, list)):
            return

        for index, item in enumerate(dst):
            if index >= len(src):
                break
            wanted = object_hash(item, index)
            if wanted.startswith(INDEX_PREFIX) or object_hash(src[index], index) == wanted:
                continue
            found = next(
                (i for i in range(index + 1, len(src)) if object_hash(src[i], i) == wanted),
                None,
            )
            if found is None:
                continue
            src.insert(index, src.pop(found))
            ops.append(
                {
                    "op": "move",
                    "from": _pointer(parts + [found]),
                    "path": _pointer(parts + [index]),
                }
            )

        for index in range(min(len(src), len(dst))):
            self._align(src[index], dst[index], parts + [index], ops)


def _canonical(value: Any) -> Any:
    """Deep copy with sorted object keys."""
    return json.loads(json.dumps(value, sort_keys=True))


def _pointer(parts: list) -> str:
    return jsonpointer.JsonPointer.from_parts(parts).path
