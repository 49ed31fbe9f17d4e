"""
Collaborators consumed by the job core: quantization engine, file storage,
notifications and the credit ledger.
"""

from quantjobs.collaborators.engine import (
    ENGINE_PROFILES,
    BlockingEngineAdapter,
    CommandEngine,
    build_engine_config,
    output_path_for,
)
from quantjobs.collaborators.interfaces import (
    CreditLedger,
    FileStorage,
    Notifier,
    ProgressCallback,
    QuantizationEngine,
)
from quantjobs.collaborators.notifier import (
    EventSender,
    LoggingNotifier,
    WebhookNotifier,
    send_event,
)
from quantjobs.collaborators.storage import LocalFileStorage, format_for_path

__all__ = [
    # Interfaces
    "QuantizationEngine",
    "FileStorage",
    "Notifier",
    "CreditLedger",
    "ProgressCallback",
    # Engine
    "ENGINE_PROFILES",
    "build_engine_config",
    "output_path_for",
    "CommandEngine",
    "BlockingEngineAdapter",
    # Storage
    "LocalFileStorage",
    "format_for_path",
    # Notifications
    "EventSender",
    "LoggingNotifier",
    "WebhookNotifier",
    "send_event",
]
