"""Stream processing core: sanitize, classify, segment, extract, project."""
from .models import (
    OutputKind,
    OutputLine,
    PermissionRequest,
    ProcessLifecycle,
    ProcessStatus,
)
from .events import (
    AssistantEvent,
    Event,
    ResultEvent,
    SystemEvent,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserEvent,
    dict_to_event,
    event_to_dict,
)
from .sanitizer import sanitize
from .classifier import classify_line
from .lifecycle import LifecycleTracker, validate_transition
from .turns import (
    ToolCall,
    ToolResult,
    TurnContent,
    extract_turn_content,
    filter_to_current_turn,
)
from .projector import (
    DisplayItem,
    ResultItem,
    TextItem,
    ToolDisplay,
    ToolItem,
    project_display_items,
)
from .config import StreamConfig
from .errors import (
    ConfigError,
    InvalidTransitionError,
    PersistenceError,
    StreamProcessingError,
    SubscriptionError,
)

__all__ = [
    # Models
    "OutputKind",
    "OutputLine",
    "PermissionRequest",
    "ProcessLifecycle",
    "ProcessStatus",
    # Events
    "AssistantEvent",
    "Event",
    "ResultEvent",
    "SystemEvent",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "UserEvent",
    "dict_to_event",
    "event_to_dict",
    # Pipeline
    "sanitize",
    "classify_line",
    "LifecycleTracker",
    "validate_transition",
    "ToolCall",
    "ToolResult",
    "TurnContent",
    "extract_turn_content",
    "filter_to_current_turn",
    "DisplayItem",
    "ResultItem",
    "TextItem",
    "ToolDisplay",
    "ToolItem",
    "project_display_items",
    # Config
    "StreamConfig",
    "load_yaml_config",
    # Errors
    "ConfigError",
    "InvalidTransitionError",
    "PersistenceError",
    "StreamProcessingError",
    "SubscriptionError",
]


def __getattr__(name: str):
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
