"""Base interface for AI providers."""

from abc import ABC, abstractmethod
from typing import Sequence

from ...state.history import Message


class AIProvider(ABC):
    """Abstract base class for chat-completion providers."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the AI provider."""
        pass

    @abstractmethod
    def complete(self, history: Sequence[Message]) -> str:
        """
        Generate the assistant reply for a conversation.

        Args:
            history: Ordered messages, ending with the newest user message.
                Never modified.

        Returns:
            The assistant's reply text

        Raises:
            AuthError: when no credential is configured
            InferenceError: when the request fails or returns no reply
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the AI provider and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the AI provider."""
        pass
