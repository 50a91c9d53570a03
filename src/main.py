from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from utils.logger import get_logger
from utils.messages import (
    ModeSwitchedMessage,
    QuitRequestedMessage,
    UserLoginMessage,
    UserLogoutMessage,
)
from utils.state import GlobalState
from views.base_screen import BaseScreen
from views.scr_admin import AdminScreen
from views.scr_cart import CartScreen
from views.scr_catalog import CatalogScreen
from views.scr_orders import OrdersScreen
from views.scr_partners import PartnersScreen
from views.scr_profile import ProfileScreen

_logger = get_logger(__name__)


class StorefrontApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "catalog": CatalogScreen,
        "cart": CartScreen,
        "orders": OrdersScreen,
        "profile": ProfileScreen,
        "partners": PartnersScreen,
        "admin": AdminScreen,
    }

    ADMIN_MODES = {"admin": "Admin Dashboard"}
    CUSTOMER_MODES = {
        "catalog": "Catalog",
        "cart": "Cart",
        "orders": "My Orders",
        "profile": "Profile",
        "partners": "Partners",
    }

    CSS_PATH = [
        "styles/index.tcss",
        "styles/login.tcss",
        "styles/catalog.tcss",
        "styles/cart.tcss",
        "styles/checkout.tcss",
        "styles/orders.tcss",
        "styles/admin.tcss",
    ]

    state: GlobalState

    def __init__(self, state: GlobalState = None):
        super().__init__()
        self.state = state or GlobalState.from_settings()

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    def _refresh_sidebar(self) -> None:
        if isinstance(self.screen, BaseScreen):
            self.screen.refresh_sidebar()

    @on(UserLoginMessage)
    def handle_user_login(self):
        self._refresh_sidebar()

    @on(UserLogoutMessage)
    @work
    async def handle_user_logout(self):
        await self.state.sign_out()
        self.notify("Signed out.")
        if self.current_mode in self.ADMIN_MODES:
            self.post_message(ModeSwitchedMessage(self.current_mode, "catalog"))
            await self.switch_mode("catalog")
        self._refresh_sidebar()

    @on(QuitRequestedMessage)
    def handle_quit(self):
        self.exit()

    @work
    async def main_flow(self):
        await self.state.startup()
        self.post_message(ModeSwitchedMessage(self.current_mode, "catalog"))
        await self.switch_mode("catalog")
        if self.state.user:
            self.notify(f"Welcome back, {self.state.user.email}!")


def main() -> None:
    _logger.info("Starting storefront")
    StorefrontApp().run()


if __name__ == "__main__":
    main()
