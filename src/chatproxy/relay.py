from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from .errors import ErrorCode
from .retry import AttemptSuccess, RequestContext
from .transcripts import TranscriptLogger

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class SSETextCollector:
    """Side-channel scanner that pulls assistant text out of relayed SSE bytes.

    Lines may be split across network chunks, so incomplete trailing text is
    held until the next ``feed`` or ``close``.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self.usage_prompt = 0
        self.usage_completion = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            self._scan(line)

    def close(self) -> None:
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer:
            self._scan(self._buffer)
        self._buffer = ""

    def _scan(self, raw_line: str) -> None:
        line = raw_line.rstrip("\r")
        if not line.startswith("data:"):
            return
        data_text = line[5:].strip()
        if not data_text or data_text == DONE_SENTINEL:
            return
        try:
            payload = json.loads(data_text)
        except json.JSONDecodeError:
            return
        if not isinstance(payload, dict):
            return
        self._collect_usage(payload.get("usage"))
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return
        first = choices[0]
        if not isinstance(first, dict):
            return
        delta = first.get("delta")
        if not isinstance(delta, dict):
            return
        content = delta.get("content")
        if isinstance(content, str) and content:
            self._parts.append(content)

    def _collect_usage(self, usage: Any) -> None:
        if not isinstance(usage, dict):
            return
        prompt_tokens = usage.get("prompt_tokens")
        if isinstance(prompt_tokens, int) and prompt_tokens > self.usage_prompt:
            self.usage_prompt = prompt_tokens
        completion_tokens = usage.get("completion_tokens")
        if isinstance(completion_tokens, int) and completion_tokens > self.usage_completion:
            self.usage_completion = completion_tokens


class TranscriptRelay:
    """Forwards upstream bytes untouched and logs the assistant text once done."""

    def __init__(self, transcripts: TranscriptLogger) -> None:
        self.transcripts = transcripts

    async def stream(self, success: AttemptSuccess, ctx: RequestContext) -> AsyncIterator[bytes]:
        response = success.response
        collector = SSETextCollector()
        finished = False
        try:
            async for chunk in response.aiter_bytes():
                collector.feed(chunk)
                yield chunk
            collector.close()
            finished = True
        except httpx.HTTPError as exc:
            logger.error(
                "chat.relay interrupted req_id=%s credential=%s detail=%s",
                ctx.req_id,
                success.credential.id,
                exc,
            )
            raise
        finally:
            if not finished:
                self.transcripts.write_nowait(
                    ctx.transcript(
                        error=ErrorCode.STREAM_INTERRUPTED.value,
                        credential_id=success.credential.id,
                    )
                )
            await response.aclose()

        await self.transcripts.write(
            ctx.transcript(
                response=collector.text,
                credential_id=success.credential.id,
                usage_prompt=collector.usage_prompt,
                usage_completion=collector.usage_completion,
            )
        )
        logger.info(
            "chat.relay complete req_id=%s attempts=%d chars=%d",
            ctx.req_id,
            len(ctx.attempts),
            len(collector.text),
        )
