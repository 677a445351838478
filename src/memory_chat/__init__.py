"""Chat server with a persistent memory layer over a stateless completion API.

Facts extracted from user messages are stored out-of-band and re-injected into
later conversations as context.

Typical usage
-------------
from memory_chat import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from .models import MemoryRecord, Message, TurnResult
from .orchestrator import OrchestratorConfig, TurnOrchestrator
from .session import ConversationSession

__all__ = [
    "ConversationSession",
    "MemoryRecord",
    "Message",
    "OrchestratorConfig",
    "TurnOrchestrator",
    "TurnResult",
    "create_app",
    "__version__",
]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    Imported lazily so the core can be used without the web stack loaded.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
