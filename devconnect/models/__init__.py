from .user import User
from .group import Group, GroupMember, MemberRole
from .chat import Conversation, ConversationKind, Message, MessageStatus

__all__ = [
    "User",
    "Group",
    "GroupMember",
    "MemberRole",
    "Conversation",
    "ConversationKind",
    "Message",
    "MessageStatus",
]
