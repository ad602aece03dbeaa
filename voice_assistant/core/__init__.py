"""Conversation session, events and assistant wiring."""
