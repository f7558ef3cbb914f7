"""Base interface for response providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from replybot.config.schema import LLMSettings

GROUP_NOTICE = "Note: This is a group chat conversation."
AFTER_HOURS_NOTICE = (
    "Note: This is outside business hours, so keep responses brief "
    "and mention business hours if relevant."
)
PROBE_TEXT = "Hello"


@dataclass
class GenerationContext:
    """What a provider knows about the conversation it answers."""
    sender_id: str = ""
    sender_name: str = ""
    is_group: bool = False
    business_hours: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "isGroup": self.is_group,
            "businessHours": self.business_hours,
        }


def build_system_prompt(template: str, context: GenerationContext | None = None) -> str:
    """
    Fold conversation context into the system prompt.

    Appends, in order: a group-chat notice, the addressee name and an
    after-hours notice, each as its own paragraph.
    """
    prompt = template
    if context is None:
        return prompt

    if context.is_group:
        prompt += f"\n\n{GROUP_NOTICE}"

    if context.sender_name:
        prompt += f"\n\nYou are responding to {context.sender_name}."

    if not context.business_hours:
        prompt += f"\n\n{AFTER_HOURS_NOTICE}"

    return prompt


class LLMProvider(ABC):
    """
    Abstract base class for response providers.

    One subclass per backend; the generator picks the class once from
    configuration and wraps every call in its timeout.
    """

    name: str = ""

    def __init__(self, settings: LLMSettings):
        self.settings = settings

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        context: GenerationContext | None = None,
    ) -> str:
        """
        Produce a reply.

        Args:
            system_prompt: Fully built system prompt.
            user_text: The inbound message text.
            context: Conversation context.

        Returns:
            Raw reply text (may be empty).
        """
        pass

    async def test_connection(self) -> bool:
        """
        Lightweight connectivity probe.

        Raises:
            Exception: Whatever the backend raises when unreachable.
        """
        reply = await self.complete(self.settings.system_prompt, PROBE_TEXT)
        return bool(reply and reply.strip())

    async def close(self) -> None:
        """Release resources."""

    def validate(self) -> None:
        """Check required settings before any network call."""
