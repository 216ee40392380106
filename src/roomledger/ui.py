"""Interactive UI components for picking participants and confirming actions."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import Member

logger = logging.getLogger(__name__)


class ParticipantCompleter(Completer):
    """Fuzzy search completer for household members."""

    def __init__(self, members: list[Member]):
        """Initialize the completer with the roster."""
        self.members = members
        self.names = [member.name for member in members]

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for member in self.members:
            if query and not fuzzy_match(query, member.name.lower()):
                continue
            meta = member.email or ("no account" if member.account_id is None else "")
            yield Completion(
                text=member.name,
                start_position=-len(document.text),
                display=member.name,
                display_meta=meta,
            )


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="bb" matches "bobby"
        query="ali" matches "alice"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


def select_participant_interactive(
    members: list[Member], prompt: str = "Participant: "
) -> str | None:
    """
    Interactive participant selection with fuzzy search.

    Returns:
        Selected member name, or None when skipped
    """
    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    completer = ParticipantCompleter(members)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt(prompt, complete_while_typing=True)

            if not result:
                return None
            if result in completer.names:
                logger.info(f"User selected participant: {result}")
                return result

            print("❌ Unknown member. Please select from the list or press Tab to complete.")

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def confirm_action(message: str) -> bool:
    """Simple yes/no confirmation, defaulting to yes."""
    response = input(f"{message} [Y/n] ").strip().lower()
    return response in ("", "y", "yes")
