from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, Input, Label

from views.base_screen import BaseScreen


class ProfileScreen(BaseScreen):
    """
    Contact details of the signed-in user, used to prefill checkout.
    Empty fields are left unchanged on save.
    """

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-profile"):
            yield Label("", id="label-profile-email")
            yield Label("Full name")
            yield Input(id="input-profile-name")
            yield Label("Phone")
            yield Input(placeholder="+7 (900) 000-00-00", id="input-profile-phone")
            yield Label("Default delivery address")
            yield Input(id="input-profile-address")
            with Horizontal(id="hort-profile-btns"):
                yield Button("Reload", id="btn-profile-reload")
                yield Button("Save", id="btn-profile-save", variant="primary")

    def on_mount(self) -> None:
        self.fill_form()

    @on(ScreenResume)
    def fill_form(self) -> None:
        identity = self.app.state.identity
        user = identity.current_user
        profile = identity.profile
        signed_in = user is not None
        for widget in self.query("#div-profile Input, #div-profile Button"):
            widget.disabled = not signed_in

        email_label = self.query_one("#label-profile-email", Label)
        if not signed_in:
            email_label.update("Sign in to edit your profile.")
            return
        email_label.update(f"Signed in as {user.email}")
        self.query_one("#input-profile-name", Input).value = profile.full_name if profile else ""
        self.query_one("#input-profile-phone", Input).value = (profile.phone or "") if profile else ""
        self.query_one("#input-profile-address", Input).value = (
            (profile.address or "") if profile else ""
        )

    @on(Button.Pressed, "#btn-profile-reload")
    @work(exclusive=True)
    async def handle_reload(self) -> None:
        result = await self.app.state.identity.refresh_profile()
        if not result.success:
            self.notify(result.error, severity="error")
        self.fill_form()

    @on(Button.Pressed, "#btn-profile-save")
    @work(exclusive=True)
    async def handle_save(self) -> None:
        result = await self.app.state.identity.update_profile(
            full_name=self.query_one("#input-profile-name", Input).value.strip(),
            phone=self.query_one("#input-profile-phone", Input).value.strip(),
            address=self.query_one("#input-profile-address", Input).value.strip(),
        )
        if result.success:
            self.notify("Profile saved.")
            self.refresh_sidebar()
        else:
            self.notify(result.error, severity="error")
