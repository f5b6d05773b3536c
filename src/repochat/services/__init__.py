"""
Service layer orchestrators for the repository chat assistant.
"""
from .conversation import ConversationOrchestrator, ConversationResult

__all__ = ["ConversationOrchestrator", "ConversationResult"]
