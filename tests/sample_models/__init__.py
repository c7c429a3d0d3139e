"""Order domain used across the test suite."""

from sqlalchemy import Integer, Numeric, String

from pg_modelkit.models import (
    ColumnReference,
    ModelRegistry,
    belongs_to,
    belongs_to_many,
    column,
    column_index,
    has_many,
)

ORDER_TOTALS_SQL = """
    CREATE VIEW order_totals AS
    SELECT o.id AS order_id, SUM(l.qty) AS qty, o.total AS total
    FROM orders o JOIN order_lines l ON l.order_id = o.id
    GROUP BY o.id
"""

LARGE_LINES_SQL = """
    CREATE VIEW large_lines AS
    SELECT id, order_id, qty FROM order_lines WHERE qty >= @{min_qty}
"""


def register(registry: ModelRegistry) -> None:
    # Declared first on purpose: sync must still create it after the tables
    registry.view(
        "OrderTotals",
        [
            column("order_id", Integer, primary_key=True),
            column("qty", Integer),
            column("total", Numeric),
        ],
        ORDER_TOTALS_SQL,
        table_name="order_totals",
        depends_on=["Order", "OrderLine"],
    )

    registry.table(
        "Customer",
        [column("id", Integer, primary_key=True), column("name", String(100))],
        table_name="customers",
    )

    registry.table(
        "Order",
        [
            column("id", Integer, primary_key=True),
            column("total", Numeric),
            column("customer_id", Integer, references=ColumnReference(model="Customer")),
        ],
        table_name="orders",
        associations=[
            has_many("lines", "OrderLine", "order_id"),
            belongs_to("customer", "Customer", "customer_id"),
            belongs_to_many("tags", "Tag", "OrderTag", "order_id", "tag_id"),
        ],
        indices=[column_index("customer_id")],
    )

    registry.table(
        "OrderLine",
        [
            column("id", Integer, primary_key=True),
            column(
                "order_id",
                Integer,
                nullable=False,
                references=ColumnReference(model="Order", on_delete="CASCADE"),
            ),
            column("qty", Integer),
        ],
        table_name="order_lines",
        associations=[belongs_to("order", "Order", "order_id")],
        indices=[column_index("order_id"), column_index("qty", concurrently=True)],
    )

    registry.table(
        "Tag",
        [column("id", Integer, primary_key=True), column("name", String(50))],
        table_name="tags",
    )

    registry.table(
        "OrderTag",
        [
            column("order_id", Integer, primary_key=True, references=ColumnReference(model="Order")),
            column("tag_id", Integer, primary_key=True, references=ColumnReference(model="Tag")),
        ],
        table_name="order_tags",
    )

    registry.dynamic_view(
        "LargeLines",
        [
            column("id", Integer, primary_key=True),
            column("order_id", Integer),
            column("qty", Integer),
        ],
        LARGE_LINES_SQL,
        {"min_qty": 10},
        table_name="large_lines",
        depends_on=["OrderLine"],
    )
