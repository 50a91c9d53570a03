from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.events import Resize
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Label, ListItem, ListView, Markdown

from utils.messages import ModeSwitchedMessage, UserLoginMessage, UserLogoutMessage
from utils.pure import format_price, generate_markdown_table, pluralize_items
from views.modal_dialog import DialogModal, QuitDialogModal
from views.modal_resize import ResizeScreenPromptModal


class Sidebar(Container):
    init_mode = ""

    def compose(self) -> ComposeResult:
        yield Label("User Info", id="label-info-1")
        yield Markdown("", id="md-userinfo")
        yield Label("", id="label-cart-badge")
        yield Button("Sign in", id="btn-login", variant="primary")
        yield Button("Sign out", id="btn-logout", variant="error")
        yield Button("Contact us", id="btn-contact")
        yield Label("Menu", id="label-info-2")
        yield ListView(id="list-menu")

    async def on_mount(self):
        self.init_mode = self.app.current_mode
        self._unsubscribe = self.app.state.cart.subscribe(self.update_cart_badge)
        self.update_cart_badge()
        self.reload()

    def on_unmount(self):
        self._unsubscribe()

    def update_cart_badge(self) -> None:
        cart = self.app.state.cart
        text = (
            "Cart is empty"
            if cart.is_empty
            else f"Cart: {pluralize_items(cart.total_items)}, {format_price(cart.total_price)}"
        )
        self.query_one("#label-cart-badge", Label).update(text)

    @work(exclusive=True, group="sidebar")
    async def reload(self) -> None:
        """Re-render user info and the menu for the current session."""
        identity = self.app.state.identity
        user = identity.current_user
        table_align = ["l", "l"]
        if user:
            profile = identity.profile
            table_rows = [
                ["Email", user.email],
                ["Name", profile.full_name if profile else "-"],
                ["Role", "Administrator" if identity.is_admin else "Customer"],
            ]
        else:
            table_rows = [["Role", "Guest"]]
        md_table_str = generate_markdown_table(None, table_rows, table_align)
        await self.query_one(Markdown).update(md_table_str)

        self.query_one("#btn-login").display = user is None
        self.query_one("#btn-logout").display = user is not None

        modes = dict(self.app.CUSTOMER_MODES)
        # only controls visibility, the admin screen asks the server itself
        if self.app.state.admin.client_flag:
            modes.update(self.app.ADMIN_MODES)

        list_menu: ListView = self.query_one("#list-menu")
        await list_menu.clear()
        await list_menu.extend(
            [ListItem(Label(v), id="list-menu-item-" + k) for k, v in modes.items()]
        )
        self.highlight_item(self.init_mode)

    async def on_list_view_selected(self, event: ListView.Selected):
        selected_mode = event.item.id.removeprefix("list-menu-item-")
        self.highlight_item(self.init_mode)
        if self.app.current_mode != selected_mode:
            self.post_message(ModeSwitchedMessage(self.app.current_mode, selected_mode))
            await self.app.switch_mode(selected_mode)

    @on(Button.Pressed, "#btn-login")
    @work()
    async def handle_login(self):
        from views.scr_login import LoginScreen

        if await self.app.push_screen_wait(LoginScreen()):
            self.post_message(UserLoginMessage())

    @on(Button.Pressed, "#btn-logout")
    @work()
    async def handle_logout(self):
        if not await self.app.push_screen_wait(
            DialogModal(
                "Are you sure you want to sign out?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        ):
            return

        self.post_message(UserLogoutMessage())

    @on(Button.Pressed, "#btn-contact")
    @work()
    async def handle_contact(self):
        from views.modal_contact import ContactModal

        await self.app.push_screen_wait(ContactModal())

    def highlight_item(self, mode_str: str):
        list_menu = self.query_one("#list-menu")
        for item in list_menu.children:
            item.highlighted = item.id == "list-menu-item-" + mode_str


class BaseScreen(Screen):
    """
    Inherited by all screens, contains common elements like
    headers, footers, sidebar, and keybindings.
    """

    BINDINGS = [
        Binding("ctrl+z", "quit", "Quit App", show=True),
    ]

    def __init__(self):
        super().__init__()

        self.configure()

    def configure(
        self,
        header_sub_title: str = "Storefront",
        show_sidebar: bool = True,
    ) -> None:
        """
        configure behavior of the base screen
        :return:
        """

        # auto gen titles and subtitles
        self.app.title = "Stroymarket"
        self.sub_title = header_sub_title
        for k, v in self.app.MODES.items():
            if isinstance(self, v):
                if k in self.app.ADMIN_MODES:
                    self.sub_title = self.app.ADMIN_MODES[k]
                elif k in self.app.CUSTOMER_MODES:
                    self.sub_title = self.app.CUSTOMER_MODES[k]

        self._show_sidebar = show_sidebar

    def compose(self) -> ComposeResult:
        if self._show_sidebar:
            yield Sidebar()
        yield Header()
        yield Footer(show_command_palette=False)

    async def on_resize(self, event: Resize) -> None:
        min_width = 60
        min_height = 20
        if event.size.width < min_width or event.size.height < min_height:
            self.app.push_screen(ResizeScreenPromptModal(min_width, min_height))

    def on_screen_resume(self) -> None:
        self.refresh_sidebar()

    def refresh_sidebar(self) -> None:
        for sidebar in self.query(Sidebar):
            sidebar.reload()

    @work()
    async def action_quit(self):
        await self.app.push_screen_wait(QuitDialogModal())
