"""Generic directed graph used to model dependencies between models.

Vertices are kept in insertion order, and every traversal follows that
order, so results are deterministic for a given declaration order.
"""

from collections.abc import Callable, Hashable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T", bound=Hashable)

# Returning False from a visit callback stops descent below that vertex.
VisitCallback = Callable[[T, dict[T, bool]], bool | None]


class Graph(Generic[T]):
    """Directed graph stored as an adjacency mapping."""

    def __init__(self) -> None:
        self._edges: dict[T, list[T]] = {}

    def __len__(self) -> int:
        return len(self._edges)

    def __contains__(self, vertex: object) -> bool:
        return vertex in self._edges

    def add_vertex(self, *vertices: T) -> "Graph[T]":
        """Insert vertices with empty edge lists.

        Re-inserting an existing vertex resets its edges.
        """
        for vertex in vertices:
            self._edges[vertex] = []
        return self

    def del_vertex(self, *vertices: T) -> "Graph[T]":
        for vertex in vertices:
            self._edges.pop(vertex, None)
        return self

    def add_edge(self, from_vertex: T, *to_vertices: T) -> "Graph[T]":
        """Append directed edges, creating the source vertex if needed.

        Edges are not deduplicated; check has_edge() first when that matters.
        """
        if from_vertex not in self._edges:
            self.add_vertex(from_vertex)
        self._edges[from_vertex].extend(to_vertices)
        return self

    def del_edge(self, from_vertex: T, *to_vertices: T) -> "Graph[T]":
        edges = self._edges.get(from_vertex)
        if not edges:
            return self
        self._edges[from_vertex] = [v for v in edges if v not in to_vertices]
        return self

    def has_vertex(self, vertex: T) -> bool:
        return vertex in self._edges

    def has_edge(self, vertex: T, edge: T) -> bool:
        return edge in self._edges.get(vertex, ())

    def vertices(self) -> Iterator[T]:
        return iter(list(self._edges))

    def edges(self, vertex: T) -> list[T]:
        return list(self._edges.get(vertex, ()))

    def walk(
        self,
        vertex: T,
        callback: VisitCallback[T] | None = None,
        visited: dict[T, bool] | None = None,
    ) -> "Graph[T]":
        """Depth-first walk from the given vertex.

        Args:
            vertex: Starting vertex.
            callback: Called once per newly visited vertex with the vertex and
                the visited map. Returning False skips that vertex's neighbors.
            visited: Shared visited map, filled in place.

        Returns:
            The graph itself.
        """
        if visited is None:
            visited = {}

        stack = [vertex]
        while stack:
            current = stack.pop()
            if visited.get(current):
                continue
            visited[current] = True

            if callback is not None and callback(current, visited) is False:
                continue

            # Reversed so neighbors are visited in edge order
            for neighbor in reversed(self._edges.get(current, ())):
                if not visited.get(neighbor):
                    stack.append(neighbor)

        return self

    def for_each(self, callback: VisitCallback[T]) -> "Graph[T]":
        """Walk from every vertex, visiting each vertex once overall."""
        visited: dict[T, bool] = {}
        for vertex in list(self._edges):
            self.walk(vertex, callback, visited)
        return self

    def path(self, vertex: T) -> list[T]:
        """Return vertices reachable from the given one in visitation order."""
        visited: dict[T, bool] = {}
        self.walk(vertex, None, visited)
        return list(visited)

    def is_cycled(self) -> bool:
        """Detect whether the graph contains at least one cycle."""
        visited: set[T] = set()
        on_stack: set[T] = set()

        for root in list(self._edges):
            if root in visited:
                continue

            visited.add(root)
            on_stack.add(root)
            stack: list[tuple[T, Iterator[T]]] = [(root, iter(self._edges.get(root, ())))]

            while stack:
                vertex, neighbors = stack[-1]
                advanced = False

                for neighbor in neighbors:
                    if neighbor in on_stack:
                        return True
                    if neighbor not in visited:
                        visited.add(neighbor)
                        on_stack.add(neighbor)
                        stack.append((neighbor, iter(self._edges.get(neighbor, ()))))
                        advanced = True
                        break

                if not advanced:
                    on_stack.discard(vertex)
                    stack.pop()

        return False

    def post_order(self) -> list[T]:
        """Return every vertex after the vertices it points at.

        Vertices on a cycle are emitted once; the closing edge is ignored.
        """
        order: list[T] = []
        visited: set[T] = set()

        for root in list(self._edges):
            if root in visited:
                continue

            visited.add(root)
            stack: list[tuple[T, Iterator[T]]] = [(root, iter(self._edges.get(root, ())))]

            while stack:
                vertex, neighbors = stack[-1]
                advanced = False

                for neighbor in neighbors:
                    if neighbor not in visited:
                        visited.add(neighbor)
                        stack.append((neighbor, iter(self._edges.get(neighbor, ()))))
                        advanced = True
                        break

                if not advanced:
                    order.append(vertex)
                    stack.pop()

        return order
