"""
Adaptive intent routing and trust engine.

Decides, for each chat instruction, whether a deterministic local edit is
enough, what the instruction targets, which message it binds to, and
whether the user should confirm before anything runs. Learns from how the
user reacts afterwards.
"""

__version__ = "0.3.0"

from intent_engine.config import ConfigurationError, IntentEngineError, load_config
from intent_engine.engine import IntentEngine, TurnDecision, TurnRequest, create_engine
from intent_engine.models import ConfirmationGate, IntentRoute, Message, MessageRole, RouteChoice
from intent_engine.storage import MemoryBackend, SQLiteBackend, StorageError

__all__ = [
    "__version__",
    "ConfigurationError",
    "ConfirmationGate",
    "IntentEngine",
    "IntentEngineError",
    "IntentRoute",
    "MemoryBackend",
    "Message",
    "MessageRole",
    "RouteChoice",
    "SQLiteBackend",
    "StorageError",
    "TurnDecision",
    "TurnRequest",
    "create_engine",
    "load_config",
]
