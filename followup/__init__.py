"""
Deferred Follow-up Workflow

This package schedules, guards, and delivers one deferred "alternative"
itinerary per trip-planning request, on top of a durable per-conversation
state store and a delayed job scheduler.
"""

__version__ = "0.1.0"

# Configuration
from followup.config import Settings

# Request handling
from followup.classifier import ClassificationResult, RequestClassifier
from followup.fingerprint import fingerprint

# State
from followup.models import ConversationState, LastResult, Profile, TaskAttempt, TaskRecord, TaskStatus
from followup.preferences import AckSummary, PreferenceStore, deep_merge

# Workflow
from followup.runner import DeferredTaskRunner, parse_payload
from followup.workflow import DeferredPayload, FollowUpWorkflow, InvokeOutcome

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    # Request handling
    "RequestClassifier",
    "ClassificationResult",
    "fingerprint",
    # State
    "ConversationState",
    "Profile",
    "TaskRecord",
    "TaskAttempt",
    "TaskStatus",
    "LastResult",
    "PreferenceStore",
    "AckSummary",
    "deep_merge",
    # Workflow
    "FollowUpWorkflow",
    "InvokeOutcome",
    "DeferredPayload",
    "DeferredTaskRunner",
    "parse_payload",
]
