"""Middleware pipeline: composes request stages in front of a handler.

Framework-independent: stages see only the ``Exchange`` defined here. A stage is
an async callable ``stage(exchange, call_next)``:

- ``await call_next()`` advances to the following stage,
- ``await call_next(error)`` (or raising before calling next) skips every
  remaining stage and hands the error to the final error channel,
- writing a response with ``exchange.send(...)`` and returning terminates.

Stage-author contract: call ``call_next`` exactly once, or send a response,
before returning. A stage that does neither raises StalledExchangeError.
"""

import functools
import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from reacher_api.errors import (
    MiddlewareError,
    ReacherError,
    ResponseAlreadySentError,
    StalledExchangeError,
    ValidationError,
)

logger = logging.getLogger("reacher_api.pipeline")

Next = Callable[..., Awaitable[None]]
Stage = Callable[["Exchange", Next], Awaitable[None]]
Handler = Callable[["Exchange"], Awaitable[Any]]

_MISSING = object()

JSON_MEDIA_TYPE = "application/json"


@dataclass
class Request:
    """Inbound request data. Header names are case-insensitive."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_host: str | None = None
    _json: Any = field(default=_MISSING, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        """Decode the body as JSON (cached).

        Raises:
            ValidationError: If the body is empty or not valid JSON.
        """
        if self._json is _MISSING:
            try:
                self._json = json.loads(self.body)
            except ValueError:
                raise ValidationError("Request body is not valid JSON", code="invalid_json")
        return self._json


@dataclass
class Response:
    """Outbound response.

    ``media_type`` says how ``body`` is rendered: JSON-serializable data for
    ``application/json`` (so None renders as ``null``), raw str or bytes for
    anything else, and no body at all when ``media_type`` is None.
    """

    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    media_type: str | None = None
    sent: bool = False


class Exchange:
    """The request/response pair threaded through a pipeline."""

    def __init__(self, request: Request) -> None:
        self.request = request
        self.response = Response()
        self.claims = None

    @property
    def sent(self) -> bool:
        return self.response.sent

    def send(
        self,
        status_code: int,
        body: Any = _MISSING,
        headers: Mapping[str, str] | None = None,
        *,
        media_type: str = JSON_MEDIA_TYPE,
    ) -> None:
        """Write the response. Headers set earlier by stages are kept.

        Without ``body`` the response is empty; any value given, None included,
        is sent with ``media_type``.

        Raises:
            ResponseAlreadySentError: If a response was already written.
        """
        if self.response.sent:
            raise ResponseAlreadySentError(
                f"Response already sent with status {self.response.status_code}"
            )
        self.response.status_code = status_code
        if body is _MISSING:
            self.response.body = None
            self.response.media_type = None
        else:
            self.response.body = body
            self.response.media_type = media_type
        if headers:
            self.response.headers.update(headers)
        self.response.sent = True

    def fail(self, error: BaseException) -> None:
        """Render an error as the response, unless one was already written."""
        if self.response.sent:
            logger.error(
                "Error after response was sent for %s %s: %r",
                self.request.method, self.request.path, error,
            )
            return

        if isinstance(error, ReacherError):
            self.send(error.status_code, error.detail(), error.headers())
            return

        logger.error(
            "Unhandled error for %s %s",
            self.request.method, self.request.path,
            exc_info=(type(error), error, error.__traceback__),
        )
        self.send(500, {"error": "internal_error", "message": "Internal server error"})


def _stage_name(stage: Any) -> str:
    return getattr(stage, "__name__", type(stage).__name__)


def compose(stages: Iterable[Stage]) -> Stage:
    """Compose stages left-to-right into a single stage.

    The result is itself a stage, so pipelines nest:
    ``compose([compose([a, b]), c])`` behaves like ``compose([a, b, c])``.

    Raises:
        MiddlewareError: If any stage is not callable.
    """
    chain = tuple(stages)
    for i, stage in enumerate(chain):
        if not callable(stage):
            raise MiddlewareError(
                f"pipeline stage at index {i} is not callable: {type(stage).__name__}"
            )

    async def pipeline(exchange: Exchange, call_next: Next) -> None:
        await _dispatch(chain, 0, exchange, call_next)

    pipeline.__name__ = f"compose({', '.join(_stage_name(s) for s in chain)})"
    pipeline.__qualname__ = pipeline.__name__
    return pipeline


async def _dispatch(
    chain: tuple[Stage, ...],
    index: int,
    exchange: Exchange,
    call_next: Next,
    error: BaseException | None = None,
) -> None:
    if error is not None:
        await call_next(error)
        return
    if exchange.sent:
        return
    if index == len(chain):
        await call_next()
        return

    stage = chain[index]
    called = False

    async def next_stage(err: BaseException | None = None) -> None:
        nonlocal called
        if called:
            raise MiddlewareError(f"{_stage_name(stage)} called next() more than once")
        called = True
        await _dispatch(chain, index + 1, exchange, call_next, err)

    try:
        await stage(exchange, next_stage)
    except Exception as e:
        if called:
            # raised after forwarding; downstream already ran
            raise
        await next_stage(e)
        return

    if not called and not exchange.sent:
        raise StalledExchangeError(
            f"{_stage_name(stage)} returned without calling next() or sending a response"
        )


def _to_body(result: Any) -> Any:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_to_body(item) for item in result]
    return result


async def run(stage: Stage, exchange: Exchange, handler: Handler) -> None:
    """Drive an exchange through ``stage`` to the terminal ``handler``.

    The handler runs at most once, and only if every stage forwarded cleanly.
    Its return value becomes a 200 JSON body unless it sent a response itself.
    Errors from any stage or the handler are rendered exactly once.
    """

    async def terminal(error: BaseException | None = None) -> None:
        if error is not None:
            exchange.fail(error)
            return
        try:
            result = await handler(exchange)
        except Exception as e:
            exchange.fail(e)
            return
        if not exchange.sent:
            exchange.send(200, _to_body(result))

    try:
        await stage(exchange, terminal)
    except Exception as e:
        exchange.fail(e)
        return

    if not exchange.sent:
        exchange.fail(StalledExchangeError(
            f"{_stage_name(stage)} returned without calling next() or sending a response"
        ))


def chain(*stages: Stage) -> Callable[[Handler], Handler]:
    """Decorator: put ``stages`` in front of a handler.

    Usage:
        @chain(rate_limit(limit), cors(), check_jwt(verifier))
        async def verify_bulk(exchange):
            ...

    The decorated function takes an Exchange and always leaves a response on it.
    """
    pipeline = compose(stages)

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def endpoint(exchange: Exchange) -> None:
            await run(pipeline, exchange, handler)

        return endpoint

    return decorator
