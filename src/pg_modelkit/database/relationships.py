"""Dependency graphs between declared models."""

from pg_modelkit.errors import DeclarationError
from pg_modelkit.graph import Graph
from pg_modelkit.models.descriptors import ModelDescriptor
from pg_modelkit.models.registry import ModelRegistry


def to_graph(
    registry: ModelRegistry,
    model: ModelDescriptor | str,
    graph: Graph[ModelDescriptor] | None = None,
) -> Graph[ModelDescriptor]:
    """Build the association graph reachable from a model.

    Each association adds an edge to its target, and to its through model
    for many-to-many. An edge that already exists is not followed again, so
    mutually associated models terminate.

    Args:
        registry: Registry resolving association targets.
        model: Starting model.
        graph: Graph to extend, or None for a new one.

    Returns:
        The graph.
    """
    if graph is None:
        graph = Graph()

    root = registry.resolve(model)
    if not graph.has_vertex(root):
        graph.add_vertex(root)

    stack = [root]
    while stack:
        current = stack.pop()
        for association in current.associations.values():
            dependencies = [registry.get(association.target)]
            if association.through:
                dependencies.insert(0, registry.get(association.through))

            for dependency in dependencies:
                if graph.has_edge(current, dependency):
                    continue
                if not graph.has_vertex(dependency):
                    graph.add_vertex(dependency)
                graph.add_edge(current, dependency)
                stack.append(dependency)

    return graph


def schema_graph(registry: ModelRegistry) -> Graph[ModelDescriptor]:
    """Graph of what each model needs to exist before it is created.

    Tables depend on the tables their columns reference; views depend on
    the models listed in depends_on.
    """
    graph: Graph[ModelDescriptor] = Graph()
    graph.add_vertex(*registry.models())

    for model in registry.models():
        for col in model.columns:
            if col.references is None or model.is_view:
                continue
            target = registry.get(col.references.model)
            if target is not model and not graph.has_edge(model, target):
                graph.add_edge(model, target)

        if model.view is not None:
            for name in model.view.depends_on:
                target = registry.get(name)
                if not graph.has_edge(model, target):
                    graph.add_edge(model, target)

    return graph


def sync_order(registry: ModelRegistry) -> list[ModelDescriptor]:
    """Models ordered so dependencies come first."""
    return schema_graph(registry).post_order()


def view_levels(registry: ModelRegistry) -> list[list[ModelDescriptor]]:
    """Group views into levels; a view only depends on views of earlier levels.

    Raises:
        DeclarationError: If views depend on each other in a cycle.
    """
    graph = schema_graph(registry)
    views = registry.views()
    done: set[ModelDescriptor] = set()
    levels: list[list[ModelDescriptor]] = []

    while len(done) < len(views):
        level = [
            view
            for view in views
            if view not in done
            and all(dep in done for dep in graph.edges(view) if dep.is_view)
        ]
        if not level:
            pending = [view.name for view in views if view not in done]
            raise DeclarationError(f"Views depend on each other in a cycle: {pending}")
        levels.append(level)
        done.update(level)

    return levels
