"""Tests for model dependency graphs."""

import pytest
from sqlalchemy import Integer

from pg_modelkit.database.relationships import schema_graph, sync_order, to_graph, view_levels
from pg_modelkit.errors import DeclarationError
from pg_modelkit.models import ColumnReference, ModelRegistry, belongs_to, column, has_many


class TestToGraph:
    """Tests for association graphs."""

    def test_mutual_associations_terminate(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        line = registry.get("OrderLine")

        graph = to_graph(registry, order)

        assert graph.has_edge(order, line)
        assert graph.has_edge(line, order)
        assert graph.edges(order).count(line) == 1

    def test_through_model_comes_before_target(self, registry: ModelRegistry) -> None:
        order = registry.get("Order")
        graph = to_graph(registry, "Order")

        edges = graph.edges(order)
        assert edges.index(registry.get("OrderTag")) < edges.index(registry.get("Tag"))

    def test_extends_given_graph(self, registry: ModelRegistry) -> None:
        graph = to_graph(registry, "Customer")
        to_graph(registry, "OrderLine", graph)

        assert graph.has_vertex(registry.get("Customer"))
        assert graph.has_edge(registry.get("OrderLine"), registry.get("Order"))

    def test_self_association(self) -> None:
        registry = ModelRegistry()
        node = registry.table(
            "Node",
            [column("id", Integer, primary_key=True), column("parent_id", Integer)],
            associations=[
                belongs_to("parent", "Node", "parent_id"),
                has_many("children", "Node", "parent_id"),
            ],
        )

        graph = to_graph(registry, node)
        assert graph.edges(node) == [node]
        assert graph.is_cycled()


class TestSyncOrder:
    """Tests for materialization order."""

    def test_references_come_first(self, registry: ModelRegistry) -> None:
        names = [model.name for model in sync_order(registry)]

        assert names.index("Customer") < names.index("Order") < names.index("OrderLine")
        assert names.index("Tag") < names.index("OrderTag")
        assert names.index("OrderLine") < names.index("OrderTotals")

    def test_schema_graph_has_no_cycle(self, registry: ModelRegistry) -> None:
        assert not schema_graph(registry).is_cycled()

    def test_self_reference_is_ignored(self) -> None:
        registry = ModelRegistry()
        registry.table(
            "Node",
            [
                column("id", Integer, primary_key=True),
                column("parent_id", Integer, references=ColumnReference(model="Node")),
            ],
        )
        assert not schema_graph(registry).is_cycled()


class TestViewLevels:
    """Tests for grouping views by dependency."""

    def test_independent_views_share_a_level(self, registry: ModelRegistry) -> None:
        levels = view_levels(registry)

        assert len(levels) == 1
        assert {view.name for view in levels[0]} == {"OrderTotals", "LargeLines"}

    def test_view_on_view_gets_next_level(self, registry: ModelRegistry) -> None:
        registry.view(
            "BigTotals",
            [column("order_id", Integer)],
            "CREATE VIEW big_totals AS SELECT order_id FROM order_totals WHERE qty > 100",
            table_name="big_totals",
            depends_on=["OrderTotals"],
        )

        levels = view_levels(registry)
        assert [view.name for view in levels[1]] == ["BigTotals"]

    def test_cyclic_views(self) -> None:
        registry = ModelRegistry()
        registry.view("A", [column("id", Integer)], "CREATE VIEW a AS SELECT 1", depends_on=["B"])
        registry.view("B", [column("id", Integer)], "CREATE VIEW b AS SELECT 1", depends_on=["A"])

        with pytest.raises(DeclarationError, match="cycle"):
            view_levels(registry)
