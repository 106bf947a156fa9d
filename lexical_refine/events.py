# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Typed publish/subscribe between the editor components.

Components emit through a plain ``event_handler(event_type, data)`` callable;
``EventStream`` is such a callable that fans events out to subscribers.
Subscriber failures are logged and never reach the emitter.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EditorEventType(Enum):
    """Event types published by an editor session"""
    DOCUMENT_LOADED = "document_loaded"
    CONTENT_CHANGED = "content_changed"
    SELECTION_CHANGED = "selection_changed"
    REFINEMENT_STARTED = "refinement_started"
    REFINEMENT_COMPLETED = "refinement_completed"
    REFINEMENT_FAILED = "refinement_failed"
    NOTICE = "notice"


@dataclass
class EditorEvent:
    type: EditorEventType
    doc_id: Optional[str] = None
    version: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[EditorEvent], None]


class EventStream:
    """Synchronous fan-out of editor events to subscribers"""

    def __init__(self):
        self._subscribers: List[Tuple[Subscriber, Optional[frozenset]]] = []

    def subscribe(self, handler: Subscriber,
                  types: Optional[Iterable[EditorEventType]] = None) -> Callable[[], None]:
        """
        Register a subscriber

        Args:
            handler: Called with each matching ``EditorEvent``
            types: Restrict delivery to these event types (all when omitted)

        Returns:
            A function that removes the subscription
        """
        entry = (handler, frozenset(types) if types is not None else None)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: EditorEvent) -> None:
        for handler, types in list(self._subscribers):
            if types is not None and event.type not in types:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event subscriber error for {event.type.value}: {e}")

    def __call__(self, event_type: EditorEventType, data: Dict[str, Any]) -> None:
        """Adapter so the stream can be passed as a component's ``event_handler``"""
        self.publish(EditorEvent(event_type, data.get("doc_id"), data.get("version"), dict(data)))
