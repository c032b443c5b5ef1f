"""
In-process board event bus.

Services and the reorder coordinator publish what happened to issues; anything
interested (the HTTP layer, the seed script, tests) subscribes by event type.

Events:
    issue_created      issue_id, status, position
    issue_moved        issue_id, from_status, to_status, position
    move_rolled_back   issue_id, reason
    column_rebalanced  project_id, status, count
"""
import logging
from typing import Dict, Callable, List

logger = logging.getLogger(__name__)

EVENT_TYPES = {"issue_created", "issue_moved", "move_rolled_back", "column_rebalanced"}


class BoardEventBus:
    """Routes board events to subscriber callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event_type: {event_type}")
        self.subscribers.setdefault(event_type, []).append(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. Callback errors are logged, not raised."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")
