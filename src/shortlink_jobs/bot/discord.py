"""Discord webhook alerts for scheduler warnings, failures and health reports."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import httpx

from shortlink_jobs.utils.logger.config import LogEvent, LogLevel
from shortlink_jobs.utils.logger.handlers.base import BaseLogHandler

ZERO_WIDTH_SPACE = "\u200b"


def fence_code(text: str, lang: str = "") -> str:
    """Render ``text`` as a Discord code block.

    Backtick fences already inside ``text`` are broken with a zero-width
    space so they cannot close the block early.
    """
    safe = text.replace("```", "```" + ZERO_WIDTH_SPACE)
    return f"```{lang}\n{safe}\n```"


def calc_fence_overhead(lang: str = "") -> int:
    """Characters added by :func:`fence_code` around the body."""
    return 8 + len(lang)


def chunk_lines(lines: Sequence[str], *, max_lines: int, max_chars: int) -> List[str]:
    """Pack log lines into as few webhook posts as the limits allow.

    :param lines: Lines in emission order.
    :param max_lines: Upper bound on lines per post.
    :param max_chars: Upper bound on characters per post; a longer single
        line is cut into several posts.
    :return: Post bodies, in order.
    """
    posts: List[str] = []
    current: List[str] = []
    size = 0

    def close() -> None:
        nonlocal current, size
        if current:
            posts.append("\n".join(current))
            current, size = [], 0

    for line in lines:
        while len(line) > max_chars:
            close()
            posts.append(line[:max_chars])
            line = line[max_chars:]
        if len(current) >= max_lines or size + len(line) + 1 > max_chars:
            close()
        current.append(line)
        size += len(line) + 1
    close()
    return posts


class DiscordTransport:
    """POSTs message bodies to one webhook URL over a shared ``httpx.AsyncClient``."""

    def __init__(self, webhook_url: str, *, username: str | None = None,
                 suppress_mentions: bool = True, http_timeout: float = 5.0):
        self.url = webhook_url
        self.username = username
        self.suppress_mentions = suppress_mentions
        self.http_timeout = http_timeout
        self._client: httpx.AsyncClient | None = None

    async def start(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.http_timeout)

    async def shutdown(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _payload(self, content: str) -> dict:
        payload = {"content": content}
        if self.username:
            payload["username"] = self.username
        if self.suppress_mentions:
            payload["allowed_mentions"] = {"parse": []}
        return payload

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return float(response.json().get("retry_after", 1))
        except ValueError:
            return float(response.headers.get("Retry-After", "1"))

    async def send(self, content: str) -> None:
        """Deliver one post; waits out 429 and 5xx responses before returning.

        Network errors are dropped, never logged.
        """
        assert self._client is not None, "transport not started"
        try:
            response = await self._client.post(self.url, json=self._payload(content))
        except httpx.RequestError:
            return
        if response.status_code == 429:
            await asyncio.sleep(max(0.0, self._retry_after(response)))
        elif response.status_code >= 500:
            await asyncio.sleep(1.0)


class DiscordHandler(BaseLogHandler):
    """Forwards WARNING and above to a Discord channel.

    ``push`` runs on the logger's flush path, so it only enqueues; a worker
    task started by :meth:`start` packs and posts the lines. When the queue
    is full new batches are dropped.
    """

    def __init__(
        self,
        webhook_url: str,
        *,
        min_level: LogLevel = LogLevel.WARNING,
        queue_size: int = 1000,
        max_lines_per_post: int = 50,
        max_chars_per_post: int = 1900,
        username: str | None = "shortlink-jobs",
        format_as_code: bool = True,
        code_lang: str = "",
        http_timeout: float = 5.0,
        transport: Optional[DiscordTransport] = None,
    ):
        """
        :param webhook_url: Discord webhook URL.
        :param min_level: Lowest level that is forwarded.
        :param queue_size: Pending batches kept before dropping.
        :param max_lines_per_post: Lines packed into one post at most.
        :param max_chars_per_post: Discord message size budget, fences included.
        :param username: Author name shown on posts.
        :param format_as_code: Whether posts are wrapped in code fences.
        :param code_lang: Fence language hint.
        :param http_timeout: Seconds before a webhook call times out.
        :param transport: Replacement transport, e.g. a recording fake.
        """
        super().__init__()
        self.transport = transport or DiscordTransport(
            webhook_url, username=username, http_timeout=http_timeout,
        )
        self.min_level = min_level
        self.max_lines = max_lines_per_post
        self.max_chars = max_chars_per_post
        self.format_as_code = format_as_code
        self.code_lang = code_lang
        self._pending: asyncio.Queue[List[str]] = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None

    @property
    def body_limit(self) -> int:
        overhead = calc_fence_overhead(self.code_lang) if self.format_as_code else 0
        return max(1, self.max_chars - overhead)

    async def start(self):
        await self.transport.start()
        if self._worker is None:
            self._worker = asyncio.create_task(self._post_pending(), name="discord-alerts")

    async def shutdown(self, timeout: float | None = 5.0):
        """Give pending posts up to ``timeout`` seconds, then stop."""
        try:
            await asyncio.wait_for(self._pending.join(), timeout)
        except asyncio.TimeoutError:
            pass

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        await self.transport.shutdown()

    async def push(self, records: List[LogEvent]):
        lines = [ev.text for ev in records if ev.level >= self.min_level]
        if not lines:
            return
        try:
            self._pending.put_nowait(lines)
        except asyncio.QueueFull:
            pass

    async def _post_pending(self):
        while True:
            lines = await self._pending.get()
            try:
                for body in chunk_lines(lines, max_lines=self.max_lines, max_chars=self.body_limit):
                    await self.transport.send(fence_code(body, self.code_lang) if self.format_as_code else body)
            finally:
                self._pending.task_done()
