"""Server-Sent Events 解码。

把流式响应的原始字节流切分成 ServerSentEvent：
- 空行表示一个事件结束；
- 以 ":" 开头的行是注释，忽略；
- 同一事件的多行 data 以 "\\n" 拼接，data 值按原样保留（不去掉前导空格）；
- meta 字段是 JSON（ChatGLM 在 finish 事件里放 usage）。
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, Dict, Iterable, Iterator, List, Optional

from glm_chat.domain.models import ServerSentEvent


class _EventBuilder:
    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reset()

    def _reset(self) -> None:
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._id: Optional[str] = None
        self._meta: Dict = {}
        self._dirty = False

    def feed(self, chunk: bytes) -> List[ServerSentEvent]:
        self._buffer += self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        events: List[ServerSentEvent] = []
        while True:
            idx = self._buffer.find("\n")
            if idx < 0:
                break
            line = self._buffer[:idx].rstrip("\r")
            self._buffer = self._buffer[idx + 1:]
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> Optional[ServerSentEvent]:
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer:
            line, self._buffer = self._buffer.rstrip("\r"), ""
            event = self._process_line(line)
            if event is not None:
                return event
        return self._emit()

    def _emit(self) -> Optional[ServerSentEvent]:
        if not self._dirty:
            return None
        event = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._id,
            meta=self._meta,
        )
        self._reset()
        return event

    def _process_line(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            return self._emit()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if name == "data":
            # ChatGLM 的增量文本紧跟在 "data:" 之后，前导空格属于正文
            self._data.append(value)
            self._dirty = True
            return None
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "id":
            self._id = value
        elif name == "meta":
            try:
                self._meta = json.loads(value) if value else {}
            except json.JSONDecodeError:
                self._meta = {"_raw": value}
        else:
            return None
        self._dirty = True
        return None


def iter_sse_events(chunks: Iterable[bytes]) -> Iterator[ServerSentEvent]:
    builder = _EventBuilder()
    for chunk in chunks:
        yield from builder.feed(chunk)
    last = builder.flush()
    if last is not None:
        yield last


async def aiter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[ServerSentEvent]:
    builder = _EventBuilder()
    async for chunk in chunks:
        for event in builder.feed(chunk):
            yield event
    last = builder.flush()
    if last is not None:
        yield last
