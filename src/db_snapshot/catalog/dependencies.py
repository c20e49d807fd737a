"""Dependency ordering for objects that reference objects of the same kind.

Tables that inherit from other tables and views that select from other views
have to be created after what they reference.  Both cases are handled by the
same depth-first topological sort.
"""

from collections.abc import Callable, Hashable, Sequence
from typing import TypeVar

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


def topological_sort(dependencies: dict[K, set[K]], keys: Sequence[K]) -> list[K]:
    """Order ``keys`` so that every key comes after the keys it depends on.

    Ties keep the input order, so an oid-ordered input stays oid-ordered
    wherever dependencies allow it.  Dependencies on keys outside ``keys``
    are ignored.  A cycle is broken at the point it is detected.

    Args:
        dependencies: Dependency graph (key -> set of keys it references).
        keys: Keys to sort, in their preferred order.

    Returns:
        Keys sorted so that referenced keys come first.

    Example:
        >>> topological_sort({"child": {"parent"}}, ["child", "parent"])
        ['parent', 'child']
    """
    position = {key: index for index, key in enumerate(keys)}
    relevant = {
        key: sorted(dependencies.get(key, set()) & position.keys(), key=position.__getitem__)
        for key in keys
    }

    sorted_keys: list[K] = []
    visited: set[K] = set()
    visiting: set[K] = set()  # cycle detection

    def visit(key: K) -> None:
        if key in visited or key in visiting:
            return
        visiting.add(key)
        for dep in relevant[key]:
            visit(dep)
        visiting.discard(key)
        visited.add(key)
        sorted_keys.append(key)

    for key in keys:
        visit(key)

    return sorted_keys


def sort_objects(
    objects: Sequence[T],
    key: Callable[[T], K],
    dependencies: dict[K, set[K]],
) -> list[T]:
    """Apply ``topological_sort`` to records, keyed by ``key(record)``."""
    by_key = {key(obj): obj for obj in objects}
    return [by_key[k] for k in topological_sort(dependencies, list(by_key))]
