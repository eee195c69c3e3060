"""Server-sent events framing.

Each event is written as an ``event:`` line and a single ``data:`` line
carrying a JSON payload, followed by a blank line. The decoder is the
inverse and accepts arbitrarily split input.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cointext.models.events import WorkflowEvent

SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: str, data: Dict[str, Any]) -> str:
    """Frame one event for the wire."""
    if "\n" in event or "\r" in event:
        raise ValueError("Event name must be a single line")
    # json.dumps never emits raw newlines, so the payload stays on one data line
    payload = json.dumps(data, default=str, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


def encode_workflow_event(event: WorkflowEvent) -> str:
    return encode_event(event.event, event.data)


class SSEDecoder:
    """
    Incremental decoder turning wire text back into (event, data) pairs.
    
    Text may be fed in chunks of any size; an incomplete trailing line is
    buffered until the next feed.
    """
    
    def __init__(self):
        self._buffer = ""
        self._event: Optional[str] = None
        self._data_lines: List[str] = []
    
    def feed(self, chunk: str) -> List[Tuple[str, Any]]:
        """Consume a chunk and return every event completed by it, in order."""
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        
        events = []
        for line in lines:
            decoded = self._process_line(line.rstrip("\r"))
            if decoded is not None:
                events.append(decoded)
        return events
    
    def flush(self) -> List[Tuple[str, Any]]:
        """Finish decoding at end of stream."""
        events = []
        if self._buffer:
            decoded = self._process_line(self._buffer.rstrip("\r"))
            self._buffer = ""
            if decoded is not None:
                events.append(decoded)
        decoded = self._dispatch()
        if decoded is not None:
            events.append(decoded)
        return events
    
    def _process_line(self, line: str) -> Optional[Tuple[str, Any]]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            # Comment / keep-alive
            return None
        
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        
        if field == "event":
            self._event = value
        elif field == "data":
            self._data_lines.append(value)
        return None
    
    def _dispatch(self) -> Optional[Tuple[str, Any]]:
        if not self._data_lines:
            self._event = None
            return None
        
        raw = "\n".join(self._data_lines)
        event = self._event or "message"
        self._event = None
        self._data_lines = []
        
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = raw
        return event, data


def decode_events(chunks: Iterable[str]) -> List[Tuple[str, Any]]:
    """Decode a complete stream given as text chunks."""
    decoder = SSEDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events
