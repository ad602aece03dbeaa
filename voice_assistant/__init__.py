"""
Voice Assistant - spoken conversations with a chat-completion model.

Captures one utterance at a time with WhisperKit, sends the conversation to
an OpenRouter chat-completion endpoint and speaks the reply with ElevenLabs.
"""

__version__ = "1.0.0"
