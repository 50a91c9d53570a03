from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Select, TextArea

CONTACT_OPTIONS = [
    ("Phone call", "phone"),
    ("WhatsApp", "whatsapp"),
    ("Telegram", "telegram"),
]


class ContactModal(ModalScreen[bool]):
    """
    "Contact us" form. The message is stored for the shop and forwarded to
    staff by e-mail and Telegram. Returns True when it got through.
    """

    def compose(self) -> ComposeResult:
        with Vertical(id="div-contact"):
            yield Label("Name")
            yield Input(id="input-contact-name")
            yield Label("Phone")
            yield Input(placeholder="+7 (900) 000-00-00", id="input-contact-phone")
            yield Label("Email (optional)")
            yield Input(id="input-contact-email")
            yield Label("Message")
            yield TextArea(id="text-contact-message")
            yield Label("How should we contact you?")
            yield Select(CONTACT_OPTIONS, value="phone", allow_blank=False, id="select-contact-pref")
            with Horizontal(id="hort-contact-btns"):
                yield Button("Cancel", id="btn-cancel")
                yield Button("Send", id="btn-send", variant="primary")

    def on_mount(self) -> None:
        identity = self.app.state.identity
        profile = identity.profile
        if profile:
            self.query_one("#input-contact-name", Input).value = profile.full_name or ""
            self.query_one("#input-contact-phone", Input).value = profile.phone or ""
        if identity.current_user:
            self.query_one("#input-contact-email", Input).value = identity.current_user.email
        self.query_one("#input-contact-name").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    @on(Button.Pressed, "#btn-cancel")
    def handle_cancel(self) -> None:
        self.dismiss(False)

    @on(Button.Pressed, "#btn-send")
    @work(exclusive=True)
    async def handle_send(self) -> None:
        btn = self.query_one("#btn-send", Button)
        btn.disabled = True
        result = await self.app.state.checkout.submit_contact_message(
            name=self.query_one("#input-contact-name", Input).value,
            phone=self.query_one("#input-contact-phone", Input).value,
            email=self.query_one("#input-contact-email", Input).value,
            message=self.query_one("#text-contact-message", TextArea).text,
            preferred_contact=str(self.query_one("#select-contact-pref", Select).value),
        )
        btn.disabled = False
        if not result.success:
            self.notify(result.error, severity="error")
            return
        self.notify("Thank you! We will contact you shortly.")
        self.dismiss(True)
