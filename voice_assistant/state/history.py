"""Conversation history shared between the session and the inference client."""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple


USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)


@dataclass(frozen=True)
class Message:
    """A single chat message."""

    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationHistory:
    """
    Ordered, append-only sequence of messages.

    Insertion order is the prompt order sent to the inference endpoint.
    The only way to remove messages is to clear the whole history.
    """

    def __init__(self):
        self._messages: List[Message] = []

    def add_user_message(self, text: str) -> Message:
        """Append a user message."""
        return self._append(Message(USER, text))

    def add_assistant_message(self, text: str) -> Message:
        """Append an assistant message."""
        return self._append(Message(ASSISTANT, text))

    def _append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def snapshot(self) -> Tuple[Message, ...]:
        """Immutable copy of the current messages."""
        return tuple(self._messages)

    def to_payload(self) -> List[Dict[str, str]]:
        """Messages in the chat-completion wire format."""
        return [message.to_dict() for message in self._messages]

    def clear(self) -> None:
        """Discard every message."""
        self._messages = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())
