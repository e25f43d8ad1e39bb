"""
Services package.
"""

from .conversation_service import ConversationService
from .branch_service import BranchService
from .export_service import ExportService
from .benchmark_service import BenchmarkEngine
from .edge_client import EdgeFunctionClient
from .llm_service import LLMService
from .persona_service import PersonaService
from .profile_service import ProfileService
from .scheduler_service import SchedulerWorker, TaskScheduler
from .voice_service import VoiceService

__all__ = [
    "ConversationService",
    "BranchService",
    "ExportService",
    "BenchmarkEngine",
    "EdgeFunctionClient",
    "LLMService",
    "PersonaService",
    "ProfileService",
    "SchedulerWorker",
    "TaskScheduler",
    "VoiceService",
]
