"""Request-scoped context threaded explicitly through every workflow call."""

import logging
import random
import string
from dataclasses import dataclass, field
from typing import Any, MutableMapping, Optional, Tuple

TRACE_ID_LENGTH = 6
_TRACE_CHARSET = string.ascii_letters + string.digits


def generate_trace_id(length: int = TRACE_ID_LENGTH) -> str:
    return "".join(random.choice(_TRACE_CHARSET) for _ in range(length))


class TraceLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the trace id and the calling function."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{extra['trace_id']}] {extra['function']}: {msg}", kwargs


@dataclass(frozen=True)
class RequestContext:
    trace_id: str = field(default_factory=generate_trace_id)
    actor: Optional[str] = None

    def logger(self, function: str, name: str = "librarium") -> TraceLoggerAdapter:
        return TraceLoggerAdapter(
            logging.getLogger(name),
            {"trace_id": self.trace_id, "function": function},
        )


def new_context(trace_id: Optional[str] = None, actor: Optional[str] = None) -> RequestContext:
    """Build a context, generating a trace id when the caller has none."""
    return RequestContext(trace_id=trace_id or generate_trace_id(), actor=actor)
