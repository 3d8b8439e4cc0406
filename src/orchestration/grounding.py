"""Grounding rules and chat history trimming shared by all routers."""

from collections.abc import Callable, Sequence
from typing import Any

from src.core.models import ChatTurn

GROUNDING_RULES_ARGUMENT = "grounding_rules"
CHAT_HISTORY_ARGUMENT = "chat_history"
CONTEXT_ARGUMENT = "context"

DEFAULT_MAX_HISTORY_ITEMS = 5

GROUNDING_RULES = (
    "You are Azure Sidekick, an AI assistant specializing in Azure, tasked with providing "
    "accurate and knowledgeable responses to user inquiries about Azure.",
    "Maintain honesty. If uncertain of an answer, respond with, \"I apologize, but I currently "
    "lack sufficient information to accurately answer your question.\"",
    "Uphold user privacy. Do not ask for, store, or share personal data without explicit permission.",
    "Promote inclusivity and respect. Do not engage in or tolerate hate speech, discrimination, "
    "or bigotry of any form. Treat all users equally, irrespective of race, ethnicity, religion, "
    "gender, age, nationality, or disability.",
    "Respect copyright laws and intellectual property rights. Do not share, reproduce, or "
    "distribute copyrighted material without the appropriate authorization.",
    "Provide precise and concise responses. Maintain a respectful and professional tone in all "
    "interactions.",
    "Wait for the user's question before providing information. Stay within your domain of "
    "expertise - Azure and related services.",
    "Ensure responses are up-to-date and accessible. Avoid unnecessary jargon and technical "
    "language when possible.",
)

HistoryFilter = Callable[[ChatTurn], bool]


class GroundingPolicy:
    """Grounding rules and history trimming.

    Args:
        max_history_items: Number of most recent turns kept by default
    """

    def __init__(self, max_history_items: int = DEFAULT_MAX_HISTORY_ITEMS):
        self.max_history_items = max_history_items

    def grounding_rules(self) -> list[str]:
        """Behavioral constraints injected into every model call."""
        return list(GROUNDING_RULES)

    def trim_history(
        self,
        history: Sequence[ChatTurn] | None,
        max_items: int | None = None,
        filter: HistoryFilter | None = None,
    ) -> list[ChatTurn]:
        """Keep the most recent turns of a chat history.

        Args:
            history: Turns in chronological order (not modified)
            max_items: Maximum number of turns to keep (default: policy setting)
            filter: Optional predicate; only matching turns are kept

        Returns:
            At most ``max_items`` turns, oldest first
        """
        limit = self.max_history_items if max_items is None else max_items
        turns = [t for t in (history or []) if filter is None or filter(t)]
        if limit <= 0:
            return []
        return turns[-limit:]

    def default_arguments(
        self,
        history: Sequence[ChatTurn] | None,
        filter: HistoryFilter | None = None,
    ) -> dict[str, Any]:
        """Argument bag shared by every model call."""
        return {
            GROUNDING_RULES_ARGUMENT: self.grounding_rules(),
            CHAT_HISTORY_ARGUMENT: self.trim_history(history, filter=filter),
        }
