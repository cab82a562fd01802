"""Events module - Progress event contract, fan-out bus and collaboration view."""

from .bus import EventHub, ProgressEventBus, Subscription
from .models import ProgressEvent, parse_event, to_sse
from .reducer import CollaborationState, CollaborationTracker, Phase, reduce

__all__ = [
	"ProgressEvent",
	"parse_event",
	"to_sse",
	"ProgressEventBus",
	"EventHub",
	"Subscription",
	"CollaborationState",
	"CollaborationTracker",
	"Phase",
	"reduce",
]
