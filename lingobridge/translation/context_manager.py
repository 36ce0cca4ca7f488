import asyncio
import re
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, FrozenSet, List, Optional, Set

from lingobridge.utils.logger.custom_logging import LoggerMixin


# ============================================================================
# TECHNICAL TERM EXTRACTION
# ============================================================================

_BACKTICK_SPAN = re.compile(r"`([^`\n]+)`")
_TERM_PATTERNS = (
    re.compile(r"\b[A-Z]{2,}[0-9]*\b"),                  # acronyms: API, HTTP2
    re.compile(r"\b[a-z]+(?:[A-Z][a-z0-9]+)+\b"),        # camelCase
    re.compile(r"\b(?:[A-Z][a-z0-9]+){2,}\b"),           # PascalCase
    re.compile(r"\b[A-Za-z0-9]+(?:_[A-Za-z0-9]+)+\b"),   # snake_case
)


def extract_technical_terms(text: str) -> FrozenSet[str]:
    """
    Pure and order-independent: the same text always yields the same set.
    Back-ticked spans are taken verbatim (trimmed) and not scanned further.
    """
    terms: Set[str] = set()
    for span in _BACKTICK_SPAN.findall(text):
        if span.strip():
            terms.add(span.strip())
    remainder = _BACKTICK_SPAN.sub(" ", text)
    for pattern in _TERM_PATTERNS:
        terms.update(pattern.findall(remainder))
    return frozenset(terms)


def has_technical_terms(text: str) -> bool:
    if _BACKTICK_SPAN.search(text):
        return True
    return any(pattern.search(text) for pattern in _TERM_PATTERNS)


# ============================================================================
# CHANNEL BUFFERS
# ============================================================================

@dataclass(frozen=True)
class ChannelMessage:
    text: str
    user_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: float = 0.0


@dataclass
class ConversationContext:
    channel_id: str
    messages: Deque[ChannelMessage]
    terms: "OrderedDict[str, None]" = field(default_factory=OrderedDict)
    participants: Set[str] = field(default_factory=set)
    last_activity: float = 0.0


class ContextManager(LoggerMixin):
    """
    Rolling per-channel conversation buffers used to enrich provider prompts.

    Each channel is guarded by its own asyncio.Lock, so writers in one
    channel never wait on another. Buffers are strictly FIFO and bounded;
    the term set is bounded too and drops its oldest terms first.

    Args:
        max_messages: Buffer size per channel
        context_messages: How many recent messages go into the prompt context
        min_context_length: Combined length below which messages are left out
        max_terms: Term set capacity per channel
        inactivity_timeout: Seconds without messages before a channel is evicted
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        max_messages: int = 10,
        context_messages: int = 3,
        min_context_length: int = 50,
        max_terms: int = 50,
        inactivity_timeout: float = 30 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.max_messages = max_messages
        self.context_messages = context_messages
        self.min_context_length = min_context_length
        self.max_terms = max_terms
        self.inactivity_timeout = inactivity_timeout
        self._clock = clock
        self._channels: Dict[str, ConversationContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, channel_id: str) -> asyncio.Lock:
        return self._locks.setdefault(channel_id, asyncio.Lock())

    async def add_message(self, channel_id: str, message: ChannelMessage) -> None:
        async with self._lock_for(channel_id):
            now = self._clock()
            context = self._channels.get(channel_id)
            if context is None:
                context = ConversationContext(
                    channel_id=channel_id,
                    messages=deque(maxlen=self.max_messages),
                )
                self._channels[channel_id] = context

            context.messages.append(message)

            for term in sorted(extract_technical_terms(message.text)):
                context.terms.pop(term, None)
                context.terms[term] = None
            while len(context.terms) > self.max_terms:
                context.terms.popitem(last=False)

            if message.user_id:
                context.participants.add(message.user_id)
            context.last_activity = now

    async def get_context(self, channel_id: str) -> str:
        """
        Prompt-ready context: the last few messages (only when they add up to
        at least min_context_length characters) followed by the term list.
        Returns "" for unknown or empty channels.
        """
        async with self._lock_for(channel_id):
            context = self._channels.get(channel_id)
            if context is None:
                return ""

            parts: List[str] = []
            recent = list(context.messages)[-self.context_messages:] if self.context_messages else []
            if sum(len(m.text) for m in recent) >= self.min_context_length:
                parts.extend(
                    f"{m.user_id}: {m.text}" if m.user_id else m.text
                    for m in recent
                )
            if context.terms:
                parts.append("Technical terms: " + ", ".join(sorted(context.terms)))
            return "\n".join(parts)

    def get_messages(self, channel_id: str) -> List[ChannelMessage]:
        context = self._channels.get(channel_id)
        return list(context.messages) if context else []

    def get_terms(self, channel_id: str) -> List[str]:
        context = self._channels.get(channel_id)
        return list(context.terms) if context else []

    def get_participants(self, channel_id: str) -> Set[str]:
        context = self._channels.get(channel_id)
        return set(context.participants) if context else set()

    async def clear_context(self, channel_id: str) -> None:
        async with self._lock_for(channel_id):
            self._channels.pop(channel_id, None)
        self._locks.pop(channel_id, None)

    def evict_inactive(self) -> int:
        """Drop channels idle longer than the inactivity timeout. Busy channels are skipped."""
        cutoff = self._clock() - self.inactivity_timeout
        evicted = 0
        for channel_id, context in list(self._channels.items()):
            lock = self._locks.get(channel_id)
            if context.last_activity <= cutoff and not (lock and lock.locked()):
                del self._channels[channel_id]
                self._locks.pop(channel_id, None)
                evicted += 1
        if evicted:
            self.logger.info(f"[CONTEXT] Evicted {evicted} inactive channels")
        return evicted

    def stats(self) -> Dict[str, int]:
        return {
            "channels": len(self._channels),
            "messages": sum(len(c.messages) for c in self._channels.values()),
        }
