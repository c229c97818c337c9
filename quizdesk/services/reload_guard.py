"""
Reload-abuse guard

Counts disruptive events (reload shortcut, back/forward navigation, tab
hidden, unload) during an active attempt and escalates:

- below the threshold: ask for confirmation; confirming submits the quiz
- at the threshold: submit automatically with the answers recorded so far

State lives in a pluggable key-value store so it survives the very reload it
guards against. The guard is a deterrent only; the attempt status in the
database remains the authority on whether an attempt can still be graded.
"""
import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from quizdesk.config import settings
from quizdesk.utils.cache import cache_service

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Minimal persistence interface used by the guard"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def incr(self, key: str) -> int:
        raise NotImplementedError

    def delete(self, *keys: str) -> None:
        raise NotImplementedError


class InMemoryStore(KeyValueStore):
    """Process-local store; used in tests and when Redis is unavailable"""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def incr(self, key: str) -> int:
        with self._lock:
            value = int(self._data.get(key) or 0) + 1
            self._data[key] = str(value)
            return value

    def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)


class RedisStore(KeyValueStore):
    """Durable store backed by Redis; keys expire after ``ttl`` seconds"""

    def __init__(self, client, prefix: str = "guard:", ttl: int = 24 * 3600):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return self.client.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self.client.setex(self._key(key), self.ttl, value)

    def incr(self, key: str) -> int:
        pipe = self.client.pipeline()
        pipe.incr(self._key(key))
        pipe.expire(self._key(key), self.ttl)
        value, _ = pipe.execute()
        return int(value)

    def delete(self, *keys: str) -> None:
        if keys:
            self.client.delete(*(self._key(key) for key in keys))


class DisruptionEvent(str, Enum):
    RELOAD_SHORTCUT = "reload_shortcut"
    NAVIGATION = "navigation"
    VISIBILITY_LOSS = "visibility_loss"
    UNLOAD = "unload"


class GuardAction(str, Enum):
    PROMPT = "prompt"
    AUTO_SUBMITTED = "auto_submitted"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"
    IGNORED = "ignored"
    NONE = "none"


@dataclass
class GuardDecision:
    action: GuardAction
    count: int
    threshold: int
    result: Optional[Dict[str, Any]] = None


@dataclass
class QuizSessionContext:
    """
    Explicit per-(quiz, student) session state for an active attempt

    Replaces ambient browser storage: everything the attempt page needs to
    remember across reloads is read and written through ``store``.
    """
    quiz_id: int
    student_id: int
    attempt_id: int
    store: KeyValueStore = field(default_factory=InMemoryStore)
    link_attempt_id: Optional[int] = None

    def key(self, name: str) -> str:
        return f"quiz-{name}-{self.quiz_id}:{self.student_id}"

    def _flag(self, name: str) -> bool:
        return self.store.get(self.key(name)) == "true"

    def _set_flag(self, name: str, value: bool) -> None:
        if value:
            self.store.set(self.key(name), "true")
        else:
            self.store.delete(self.key(name))

    @property
    def reload_attempts(self) -> int:
        return int(self.store.get(self.key("reload-attempts")) or 0)

    def record_disruption(self) -> int:
        return self.store.incr(self.key("reload-attempts"))

    @property
    def auto_submit(self) -> bool:
        return self._flag("auto-submit")

    @auto_submit.setter
    def auto_submit(self, value: bool) -> None:
        self._set_flag("auto-submit", value)

    @property
    def prompt_open(self) -> bool:
        return self._flag("prompt-open")

    @prompt_open.setter
    def prompt_open(self, value: bool) -> None:
        self._set_flag("prompt-open", value)

    @property
    def submitting(self) -> bool:
        return self._flag("submitting")

    @submitting.setter
    def submitting(self, value: bool) -> None:
        self._set_flag("submitting", value)

    def save_result(self, result: Dict[str, Any]) -> None:
        self.store.set(self.key("result"), json.dumps(result, default=str))

    def last_result(self) -> Optional[Dict[str, Any]]:
        raw = self.store.get(self.key("result"))
        return json.loads(raw) if raw else None

    def clear(self) -> None:
        """Drop counters and flags; the result snapshot is kept"""
        self.store.delete(
            self.key("reload-attempts"),
            self.key("auto-submit"),
            self.key("prompt-open"),
            self.key("submitting"),
        )


class ReloadGuard:
    """
    Escalating guard over a stream of disruption events

    ``submit`` must run the normal completion operation and return its
    result; it is the only way the guard ends an attempt.
    """

    def __init__(
        self,
        context: QuizSessionContext,
        submit: Callable[[], Dict[str, Any]],
        threshold: int = None,
    ):
        self.context = context
        self.submit = submit
        self.threshold = threshold or settings.RELOAD_ABUSE_THRESHOLD

    def _decision(self, action: GuardAction, count: int = None, result: Dict[str, Any] = None) -> GuardDecision:
        if count is None:
            count = self.context.reload_attempts
        return GuardDecision(action=action, count=count, threshold=self.threshold, result=result)

    def on_disruption(self, event: DisruptionEvent) -> GuardDecision:
        event = DisruptionEvent(event)
        ctx = self.context

        if ctx.submitting or ctx.prompt_open:
            return self._decision(GuardAction.IGNORED)

        count = ctx.record_disruption()
        logger.info(
            f"Disruption '{event.value}' on attempt {ctx.attempt_id} "
            f"(quiz={ctx.quiz_id}, student={ctx.student_id}): {count}/{self.threshold}"
        )

        if count >= self.threshold:
            ctx.auto_submit = True
            logger.warning(f"Reload-abuse threshold reached, auto-submitting attempt {ctx.attempt_id}")
            result = self._submit()
            return self._decision(GuardAction.AUTO_SUBMITTED, count, result)

        ctx.prompt_open = True
        return self._decision(GuardAction.PROMPT, count)

    def confirm(self) -> GuardDecision:
        """Student chose to leave anyway: submit with the current answers"""
        ctx = self.context
        if not ctx.prompt_open or ctx.submitting:
            return self._decision(GuardAction.IGNORED)

        count = ctx.reload_attempts
        ctx.prompt_open = False
        result = self._submit()
        return self._decision(GuardAction.SUBMITTED, count, result)

    def cancel(self) -> GuardDecision:
        """Student stayed on the page; the quiz continues"""
        self.context.prompt_open = False
        return self._decision(GuardAction.CANCELLED)

    def resume(self) -> GuardDecision:
        """Called on page load: finish a submission that a reload interrupted"""
        ctx = self.context
        if ctx.auto_submit and not ctx.submitting:
            count = ctx.reload_attempts
            logger.info(f"Completing pending auto-submit for attempt {ctx.attempt_id}")
            result = self._submit()
            return self._decision(GuardAction.AUTO_SUBMITTED, count, result)
        return self._decision(GuardAction.NONE)

    def _submit(self) -> Dict[str, Any]:
        ctx = self.context
        ctx.submitting = True
        try:
            result = self.submit()
        except Exception as e:
            logger.error(f"Guard submission failed for attempt {ctx.attempt_id}: {str(e)}")
            ctx.clear()
            raise

        ctx.save_result(result)
        ctx.clear()
        return result


_fallback_store = InMemoryStore()


def get_guard_store() -> KeyValueStore:
    """Redis when reachable, otherwise a process-local store"""
    if cache_service.available:
        return RedisStore(cache_service.redis_client)
    return _fallback_store
