"""
Database models package.
"""

from .profile import Profile
from .conversation import Conversation
from .message import Message
from .persona import Persona
from .task import ScheduledTask, TaskExecution

__all__ = ["Profile", "Conversation", "Message", "Persona", "ScheduledTask", "TaskExecution"]
