from typing import Dict, List, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Button, DataTable, Input, Label, Select

from db.models import Product
from services.product_feed import PLACEHOLDER_PRODUCTS, facets_for, filter_products
from utils.pure import format_price
from views.base_screen import BaseScreen
from views.modal_prod_detail import ProdDetailModal


def _options(values) -> List[tuple]:
    return [(v, v) for v in values]


def _selected(select: Select) -> Optional[str]:
    # a blank Select holds a sentinel, not a str
    return select.value if isinstance(select.value, str) else None


class CatalogScreen(BaseScreen):
    """
    Browse the catalog with category / class / manufacturer filters and a
    free-text search. Falls back to a sample catalog when the feed is empty.
    """

    # bindings here are only displayed in the footer
    BINDINGS = [
        Binding("fn+shift+1", "abs(1)", "View Product", show=True, key_display="⏎"),
    ]

    def __init__(self):
        super().__init__()
        self._products: List[Product] = []
        self._by_id: Dict[str, Product] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield Input(id="input-search", placeholder="Start typing to search products...")
        with Horizontal(id="hort-filters"):
            yield Select([], prompt="All categories", id="select-category")
            yield Select([], prompt="All classes", id="select-class")
            yield Select([], prompt="All manufacturers", id="select-manufacturer")
            yield Button("Reload", id="btn-reload")
        yield DataTable(id="table-catalog")
        yield Label("", id="label-result-cnt")

    def on_mount(self):
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Name", "Category", "Class", "Manufacturer", "Price", "Stock")

        self.query_one("#input-search").focus()
        self.load_catalog()

    @on(Button.Pressed, "#btn-reload")
    @work(exclusive=True, group="catalog")
    async def load_catalog(self) -> None:
        products = await self.app.state.feed.list_products()
        if not products:
            products = list(PLACEHOLDER_PRODUCTS)
            self.notify("Product feed unavailable, showing the sample catalog.", severity="warning")
        self._products = products
        self._by_id = {p.id: p for p in products}

        categories = sorted({p.category for p in products if p.category})
        self.query_one("#select-category", Select).set_options(_options(categories))
        self._refresh_facets()
        self.update_results()

    def _refresh_facets(self) -> None:
        """Class and manufacturer options follow the chosen category."""
        category = _selected(self.query_one("#select-category", Select))
        facets = facets_for(filter_products(self._products, category=category))
        self.query_one("#select-class", Select).set_options(_options(facets.classes))
        self.query_one("#select-manufacturer", Select).set_options(
            _options(facets.manufacturers)
        )

    @on(Select.Changed, "#select-category")
    def handle_category_changed(self) -> None:
        self._refresh_facets()
        self.update_results()

    @on(Select.Changed, "#select-class")
    @on(Select.Changed, "#select-manufacturer")
    @on(Input.Changed, "#input-search")
    def handle_filter_changed(self) -> None:
        self.update_results()

    def update_results(self) -> None:
        results = filter_products(
            self._products,
            query=self.query_one("#input-search", Input).value,
            category=_selected(self.query_one("#select-category", Select)),
            klass=_selected(self.query_one("#select-class", Select)),
            manufacturer=_selected(self.query_one("#select-manufacturer", Select)),
        )
        table = self.query_one(DataTable)
        table.clear()
        for p in results:
            table.add_row(
                p.name,
                p.category or "-",
                p.klass or "-",
                p.manufacturer or "-",
                format_price(p.price),
                "yes" if p.in_stock else "no",
                key=p.id,
            )
        self.query_one("#label-result-cnt", Label).update(
            f"{len(results)} of {len(self._products)} products"
        )

    @on(DataTable.RowSelected)
    @work()
    async def handle_row_selected(self, event: DataTable.RowSelected) -> None:
        product = self._by_id.get(event.row_key.value)
        if product is None:
            return
        await self.app.push_screen_wait(ProdDetailModal(product))
