from cardwise.models.user import User
from cardwise.models.conversation import Conversation, ConversationMessage

__all__ = [
    "Conversation",
    "ConversationMessage",
    "User",
]
