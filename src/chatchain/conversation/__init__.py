"""
Conversation package: per-chat models and the cache that holds them.
"""

from chatchain.conversation.cache import ModelCache
from chatchain.conversation.entry import ConversationEntry

__all__ = ["ConversationEntry", "ModelCache"]
