from textual import on, work
from textual.app import ComposeResult
from textual.widgets import Button, DataTable, Label

from views.base_screen import BaseScreen


class PartnersScreen(BaseScreen):
    """Manufacturers and suppliers the shop works with, from the partners sheet."""

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield DataTable(id="table-partners")
        yield Label("", id="label-partners-cnt")
        yield Button("Reload", id="btn-reload")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Name", "Address", "Contact")
        self.load_partners()

    @on(Button.Pressed, "#btn-reload")
    @work(exclusive=True)
    async def load_partners(self) -> None:
        partners = await self.app.state.feed.list_partners()
        table = self.query_one(DataTable)
        table.clear()
        for p in partners:
            table.add_row(p.name, p.address or "-", p.contact or "-", key=p.id)
        self.query_one("#label-partners-cnt", Label).update(
            f"{len(partners)} partners" if partners else "Partner list is unavailable."
        )
