"""Progress events sent from the invoice pipeline to the client.

The emitter only knows about a sink (any callable taking an event dict);
the chat route plugs in a QueueSink feeding the response stream, tests plug
in a ListSink and assert on the recorded sequence.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PROCESSING_START = "processingStart"
EXTRACTION_COMPLETE = "extractionComplete"
SAVING_START = "savingStart"
SAVING_COMPLETE = "savingComplete"
WARNING = "warning"
ERROR = "error"

PROGRESS_EVENT_TYPES = (
    PROCESSING_START,
    EXTRACTION_COMPLETE,
    SAVING_START,
    SAVING_COMPLETE,
    WARNING,
    ERROR,
)

Event = Dict[str, Any]
EventSink = Callable[[Event], None]


class ProgressEmitter:
    """Writes typed progress events to a sink, in call order."""

    def __init__(self, sink: Optional[EventSink] = None):
        self._sink = sink

    def emit(self, event_type: str, content: str, **extra: Any) -> None:
        if event_type not in PROGRESS_EVENT_TYPES:
            raise ValueError(f"Unknown progress event type: {event_type}")
        self.send({"type": event_type, "content": content, **extra})

    def send(self, event: Event) -> None:
        """Deliver a raw event. Delivery is best effort: sink errors are logged, never raised."""
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            logger.warning(f"Dropping {event.get('type')} event, sink failed: {e}")

    def processing_start(self, content: str = "Extracting invoice data...") -> None:
        self.emit(PROCESSING_START, content)

    def extraction_complete(self, content: str = "Invoice data extracted.", **extra: Any) -> None:
        self.emit(EXTRACTION_COMPLETE, content, **extra)

    def saving_start(self, content: str = "Saving invoice data to database...") -> None:
        self.emit(SAVING_START, content)

    def saving_complete(self, content: str = "Invoice saved successfully.", **extra: Any) -> None:
        self.emit(SAVING_COMPLETE, content, **extra)

    def warning(self, content: str, **extra: Any) -> None:
        self.emit(WARNING, content, **extra)

    def error(self, content: str, **extra: Any) -> None:
        self.emit(ERROR, content, **extra)


class ListSink:
    """Collects events in memory."""

    def __init__(self):
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [e["type"] for e in self.events]


class QueueSink:
    """Feeds events into an asyncio queue; ``close()`` marks the end of the stream.

    Must be created on the event loop that drains it. Events sent from worker
    threads (storage calls run through ``asyncio.to_thread``) are handed to
    that loop in call order.
    """

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue = queue or asyncio.Queue()
        self.closed = False
        self._loop = asyncio.get_running_loop()

    def _put(self, item: Optional[Event]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self.queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self.queue.put_nowait, item)

    def __call__(self, event: Event) -> None:
        if self.closed:
            raise RuntimeError("stream already closed")
        self._put(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._put(None)

    async def __aiter__(self):
        while True:
            event = await self.queue.get()
            if event is None:
                break
            yield event
