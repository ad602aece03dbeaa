"""Conversation history and credential persistence."""
