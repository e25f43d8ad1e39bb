"""
API Routers package.
"""

from .benchmarks import router as benchmarks_router
from .chat import router as chat_router
from .conversations import router as conversations_router
from .personas import router as personas_router
from .profile import router as profile_router
from .tasks import router as tasks_router
from .voice import router as voice_router

__all__ = [
    "benchmarks_router",
    "chat_router",
    "conversations_router",
    "personas_router",
    "profile_router",
    "tasks_router",
    "voice_router"
]
