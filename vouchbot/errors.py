"""
Error taxonomy for the vouch bot.

UserInputError and its subclasses are surfaced to the user as a reply plus a
failure reaction. PersistenceError is surfaced as a generic retry message.
ProcessFatalError stops the process at startup.
"""
from __future__ import annotations

from typing import Optional


class VouchBotError(Exception):
    """Base class for all bot errors."""


class UserInputError(VouchBotError):
    title = "Error"

    def __init__(self, description: str, title: Optional[str] = None):
        super().__init__(description)
        self.description = description
        if title:
            self.title = title


class UsageError(UserInputError):
    title = "Usage Error"


class PermissionDeniedError(UserInputError):
    title = "Permission Error"

    def __init__(self, description: str = "Only bot owners can use this command."):
        super().__init__(description)


class CooldownActiveError(UserInputError):
    title = "Cooldown"

    def __init__(self, remaining_seconds: int):
        super().__init__(
            f"Please wait {remaining_seconds} seconds before using this command again."
        )
        self.remaining_seconds = remaining_seconds


class VouchCooldownError(UserInputError):
    title = "Cooldown Error"

    def __init__(self, remaining_seconds: int):
        minutes, seconds = divmod(remaining_seconds, 60)
        super().__init__(f"Wait {minutes}m {seconds}s before vouching for this user again.")
        self.remaining_seconds = remaining_seconds
        self.minutes = minutes
        self.seconds = seconds


class InvalidUserError(UserInputError):
    pass


class SelfVouchError(UserInputError):
    def __init__(self):
        super().__init__("You can't vouch for yourself.")


class MissingProofError(UserInputError):
    def __init__(self):
        super().__init__(
            "No proof/screenshot attached. Please provide a screenshot to verify "
            "the vouch's authenticity."
        )


class InvalidCountError(UserInputError):
    def __init__(self, low: int, high: int):
        super().__init__(f"Vouch count must be {low}-{high}.")


class EmptyMessageError(UserInputError):
    def __init__(self, limit: int):
        super().__init__(f"A message is required and must be under {limit} characters.")


class InvalidPageError(UserInputError):
    def __init__(self, raw: str):
        super().__init__(f"Page must be a whole number, got \"{raw}\".")


class PageOutOfRangeError(UserInputError):
    def __init__(self, page: int, total_pages: int):
        if page < 1:
            description = "Page number must be 1 or greater."
        else:
            description = f"Page must be 1-{total_pages}."
        super().__init__(description)
        self.page = page
        self.total_pages = total_pages


class SameUserTransferError(UserInputError):
    def __init__(self):
        super().__init__("Source and target users must be different.")


class PersistenceError(VouchBotError):
    """A read or write against the vouch store failed."""


class ProcessFatalError(VouchBotError):
    """The store could not be opened at startup."""
