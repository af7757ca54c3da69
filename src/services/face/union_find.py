"""Disjoint-set (union-find) with path compression and union by rank."""
from typing import Dict, Generic, Hashable, Iterable, List, TypeVar

T = TypeVar('T', bound=Hashable)


class DisjointSet(Generic[T]):
    """
    Union-find over opaque hashable IDs.

    Groups are reported in first-seen order, with members in insertion
    order, so results are deterministic for a deterministic input.
    """

    def __init__(self, items: Iterable[T] = ()):
        self._parent: Dict[T, T] = {}
        self._rank: Dict[T, int] = {}
        for item in items:
            self.add(item)

    def __contains__(self, item: T) -> bool:
        return item in self._parent

    def __len__(self) -> int:
        return len(self._parent)

    def add(self, item: T) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0

    def find(self, item: T) -> T:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: T, b: T) -> T:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return root_a

        rank_a = self._rank[root_a]
        rank_b = self._rank[root_b]
        if rank_a < rank_b:
            self._parent[root_a] = root_b
            return root_b
        self._parent[root_b] = root_a
        if rank_a == rank_b:
            self._rank[root_a] = rank_a + 1
        return root_a

    def connected(self, a: T, b: T) -> bool:
        return self.find(a) == self.find(b)

    def groups(self) -> List[List[T]]:
        grouped: Dict[T, List[T]] = {}
        for item in self._parent:
            grouped.setdefault(self.find(item), []).append(item)
        return list(grouped.values())
