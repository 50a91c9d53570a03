from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    broadcasted when the user asks to sign out
    """

    bubble = True


class UserLoginMessage(Message):
    """
    Fired when a session starts (sign-in, sign-up or restored token),
    so screens can refresh the user info and menu
    """

    bubble = True


class CartChangedMessage(Message):
    """
    Fired by the cart screen after every cart mutation (CartStore.subscribe).
    Triggers a refresh of the cart item list.

    The sidebar badge subscribes to the store directly
    """

    bubble = True


class NewOrderMessage(Message):
    """
    Fired when an order has been stored.
    Listened to by the orders screen and the admin dashboard
    """

    bubble = True

    def __init__(self, order_id: str) -> None:
        super().__init__()
        self.order_id = order_id


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode
