"""Tests for the middleware pipeline: ordering, termination, errors and nesting."""

import logging

import pytest

from reacher_api.errors import (
    MiddlewareError,
    ResponseAlreadySentError,
    ValidationError,
)
from reacher_api.pipeline import Exchange, Request, chain, compose, run


def _exchange(method: str = "GET", **kwargs) -> Exchange:
    return Exchange(Request(method=method, path="/api/test", **kwargs))


def _recording_stage(name: str, log: list[str]):
    async def stage(exchange, call_next):
        log.append(name)
        await call_next()

    stage.__name__ = name
    return stage


def _terminating_stage(name: str, log: list[str], status: int = 403):
    async def stage(exchange, call_next):
        log.append(name)
        exchange.send(status, {"stopped_by": name})

    stage.__name__ = name
    return stage


def _handler(log: list[str], result=None):
    async def handler(exchange):
        log.append("handler")
        return result if result is not None else {"ok": True}

    return handler


class TestRun:
    async def test_stages_run_in_order_then_handler(self):
        log: list[str] = []
        pipeline = compose([_recording_stage(n, log) for n in ("a", "b", "c")])
        exchange = _exchange()

        await run(pipeline, exchange, _handler(log))

        assert log == ["a", "b", "c", "handler"]
        assert exchange.response.status_code == 200
        assert exchange.response.body == {"ok": True}

    async def test_empty_pipeline_runs_handler(self):
        log: list[str] = []
        exchange = _exchange()

        await run(compose([]), exchange, _handler(log))

        assert log == ["handler"]
        assert exchange.sent

    async def test_terminating_stage_stops_pipeline(self):
        log: list[str] = []
        pipeline = compose([
            _recording_stage("a", log),
            _terminating_stage("b", log),
            _recording_stage("c", log),
        ])
        exchange = _exchange()

        await run(pipeline, exchange, _handler(log))

        assert log == ["a", "b"]
        assert exchange.response.status_code == 403
        assert exchange.response.body == {"stopped_by": "b"}

    async def test_send_then_next_skips_rest(self):
        log: list[str] = []

        async def sends_and_forwards(exchange, call_next):
            exchange.send(204)
            await call_next()

        pipeline = compose([sends_and_forwards, _recording_stage("c", log)])
        exchange = _exchange()

        await run(pipeline, exchange, _handler(log))

        assert log == []
        assert exchange.response.status_code == 204

    async def test_forwarded_error_skips_rest(self):
        log: list[str] = []

        async def forwards_error(exchange, call_next):
            log.append("b")
            await call_next(ValidationError("bad input"))

        pipeline = compose([_recording_stage("a", log), forwards_error, _recording_stage("c", log)])
        exchange = _exchange()

        await run(pipeline, exchange, _handler(log))

        assert log == ["a", "b"]
        assert exchange.response.status_code == 422
        assert exchange.response.body == {"error": "validation_error", "message": "bad input"}

    async def test_raised_error_is_forwarded(self):
        log: list[str] = []

        async def raises(exchange, call_next):
            raise ValidationError("nope")

        pipeline = compose([raises, _recording_stage("c", log)])
        exchange = _exchange()

        await run(pipeline, exchange, _handler(log))

        assert log == []
        assert exchange.response.status_code == 422

    async def test_unexpected_error_is_500_and_logged(self, caplog):
        async def broken(exchange, call_next):
            raise KeyError("oops")

        exchange = _exchange()
        with caplog.at_level(logging.ERROR, logger="reacher_api.pipeline"):
            await run(compose([broken]), exchange, _handler([]))

        assert exchange.response.status_code == 500
        assert exchange.response.body["error"] == "internal_error"
        assert "Unhandled error" in caplog.text

    async def test_handler_error(self):
        async def handler(exchange):
            raise ValidationError("Missing `toEmail` query param")

        exchange = _exchange()
        await run(compose([]), exchange, handler)

        assert exchange.response.status_code == 422
        assert "toEmail" in exchange.response.body["message"]

    async def test_handler_runs_once(self):
        log: list[str] = []
        pipeline = compose([_recording_stage("a", log)])
        exchange = _exchange()

        await run(pipeline, exchange, _handler(log))

        assert log.count("handler") == 1

    async def test_handler_may_send_its_own_response(self):
        async def handler(exchange):
            exchange.send(201, {"created": True})
            return {"ignored": True}

        exchange = _exchange()
        await run(compose([]), exchange, handler)

        assert exchange.response.status_code == 201
        assert exchange.response.body == {"created": True}

    async def test_stage_headers_survive(self):
        async def tag(exchange, call_next):
            exchange.response.headers["X-Tag"] = "1"
            await call_next()

        exchange = _exchange()
        await run(compose([tag]), exchange, _handler([]))

        assert exchange.response.headers["X-Tag"] == "1"

    async def test_pydantic_result_is_serialized(self):
        from reacher_api.schemas import BulkVerifyResponse

        async def handler(exchange):
            return BulkVerifyResponse(name="batch1", report=[{"input": "a@x.com"}])

        exchange = _exchange()
        await run(compose([]), exchange, handler)

        assert exchange.response.body == {"name": "batch1", "report": [{"input": "a@x.com"}]}

    async def test_scalar_result_stays_json(self):
        async def handler(exchange):
            return "safe"

        exchange = _exchange()
        await run(compose([]), exchange, handler)

        assert exchange.response.body == "safe"
        assert exchange.response.media_type == "application/json"

    async def test_none_result_is_json_null(self):
        async def handler(exchange):
            return None

        exchange = _exchange()
        await run(compose([]), exchange, handler)

        assert exchange.response.body is None
        assert exchange.response.media_type == "application/json"

    async def test_send_without_body_is_empty(self):
        exchange = _exchange()
        exchange.send(204)

        assert exchange.response.body is None
        assert exchange.response.media_type is None

    async def test_send_text(self):
        exchange = _exchange()
        exchange.send(200, "pong", media_type="text/plain")

        assert exchange.response.body == "pong"
        assert exchange.response.media_type == "text/plain"


class TestStageContract:
    async def test_stalled_stage_is_500(self):
        log: list[str] = []

        async def stalls(exchange, call_next):
            return None

        exchange = _exchange()
        await run(compose([stalls, _recording_stage("c", log)]), exchange, _handler(log))

        assert log == []
        assert exchange.response.status_code == 500
        assert exchange.response.body["error"] == "stalled_exchange"
        assert "stalls" in exchange.response.body["message"]

    async def test_stalled_raw_stage(self):
        async def stalls(exchange, call_next):
            return None

        exchange = _exchange()
        await run(stalls, exchange, _handler([]))

        assert exchange.response.status_code == 500

    async def test_next_called_twice(self):
        log: list[str] = []

        async def twice(exchange, call_next):
            await call_next()
            await call_next()

        exchange = _exchange()
        with pytest.raises(MiddlewareError, match="more than once"):
            await compose([twice])(exchange, _terminal(log))

    async def test_non_callable_stage_rejected(self):
        with pytest.raises(MiddlewareError, match="index 1"):
            compose([_recording_stage("a", []), "not a stage"])

    async def test_response_written_once(self):
        exchange = _exchange()
        exchange.send(200, {"first": True})

        with pytest.raises(ResponseAlreadySentError):
            exchange.send(500, {"second": True})
        assert exchange.response.body == {"first": True}

    async def test_error_after_send_is_logged_not_written(self, caplog):
        async def sends_then_fails(exchange, call_next):
            exchange.send(200, {"done": True})
            raise ValidationError("late")

        exchange = _exchange()
        with caplog.at_level(logging.ERROR, logger="reacher_api.pipeline"):
            await run(compose([sends_then_fails]), exchange, _handler([]))

        assert exchange.response.status_code == 200
        assert exchange.response.body == {"done": True}
        assert "after response was sent" in caplog.text


def _terminal(log: list[str]):
    async def call_next(error=None):
        log.append(f"terminal:{type(error).__name__}" if error else "terminal")

    return call_next


class TestComposition:
    async def test_nested_equals_flat(self):
        flat_log: list[str] = []
        nested_log: list[str] = []

        flat = compose([_recording_stage(n, flat_log) for n in "abc"])
        a, b, c = (_recording_stage(n, nested_log) for n in "abc")
        nested = compose([compose([a, b]), c])

        await run(flat, _exchange(), _handler(flat_log))
        await run(nested, _exchange(), _handler(nested_log))

        assert flat_log == nested_log == ["a", "b", "c", "handler"]

    async def test_nested_termination(self):
        log: list[str] = []
        inner = compose([_recording_stage("a", log), _terminating_stage("b", log, status=401)])
        nested = compose([inner, _recording_stage("c", log)])
        exchange = _exchange()

        await run(nested, exchange, _handler(log))

        assert log == ["a", "b"]
        assert exchange.response.status_code == 401

    async def test_nested_error_reaches_outer_channel(self):
        log: list[str] = []

        async def fails(exchange, call_next):
            await call_next(ValidationError("inner"))

        nested = compose([compose([fails]), _recording_stage("c", log)])

        await nested(_exchange(), _terminal(log))

        assert log == ["terminal:ValidationError"]

    async def test_right_nesting(self):
        log: list[str] = []
        a, b, c = (_recording_stage(n, log) for n in "abc")

        await run(compose([a, compose([b, c])]), _exchange(), _handler(log))

        assert log == ["a", "b", "c", "handler"]


class TestChain:
    async def test_chain_decorator(self):
        log: list[str] = []

        @chain(_recording_stage("a", log), _recording_stage("b", log))
        async def endpoint(exchange):
            """Endpoint docstring."""
            log.append("handler")
            return {"done": True}

        exchange = _exchange()
        await endpoint(exchange)

        assert log == ["a", "b", "handler"]
        assert exchange.response.body == {"done": True}
        assert endpoint.__name__ == "endpoint"
        assert endpoint.__doc__ == "Endpoint docstring."


class TestRequest:
    def test_headers_case_insensitive(self):
        request = Request(method="get", path="/", headers={"Authorization": "Bearer x"})
        assert request.method == "GET"
        assert request.header("authorization") == "Bearer x"
        assert request.header("AUTHORIZATION") == "Bearer x"
        assert request.header("missing") is None

    def test_json_body(self):
        request = Request(method="POST", path="/", body=b'{"name": "batch1"}')
        assert request.json() == {"name": "batch1"}

    def test_invalid_json_body(self):
        request = Request(method="POST", path="/", body=b"{nope")
        with pytest.raises(ValidationError, match="not valid JSON"):
            request.json()
