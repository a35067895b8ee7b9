"""Conversation state, strategy execution and the routing pipeline."""
