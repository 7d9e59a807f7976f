import io

import pytest

from wsgikit.body_limit import (
    BodyLimitInfo,
    BodyLimitSource,
    MaxBytesError,
    body_limit,
)
from wsgikit.messages import Request, Response


class ClosingBody:
    def __init__(self):
        self.closed = False

    def read(self, size=-1):
        return b""

    def close(self):
        self.closed = True


def reading_handler(record):
    def handler(response, request):
        try:
            record["data"] = request.body.read()
        except MaxBytesError as exc:
            record["error"] = exc
            response.write_header(400)
            return
        response.write_header(200)

    return handler


def capturing_handler(captured):
    def handler(response, request):
        captured["body"] = request.body

    return handler


def test_content_length_rejects_early_and_calls_on_reject():
    calls = []
    downstream = []

    def next_handler(response, request):
        downstream.append(True)
        response.write_header(200)

    h = body_limit(5, on_reject=lambda r, info: calls.append(info))(next_handler)
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))

    assert downstream == []
    assert rr.status == 413
    assert rr.headers.get("Connection") == "close"
    assert calls == [
        BodyLimitInfo(limit=5, content_length=6, source=BodyLimitSource.CONTENT_LENGTH)
    ]


def test_content_length_rejects_early_closes_request_body():
    body = ClosingBody()

    def next_handler(response, request):
        raise AssertionError("downstream should not be called")

    h = body_limit(5)(next_handler)
    rr = Response()
    h(rr, Request(method="POST", body=body, content_length=6))

    assert rr.status == 413
    assert body.closed is True


def test_read_exceed_does_not_auto_respond_but_calls_on_reject():
    calls = []
    record = {}
    h = body_limit(5, on_reject=lambda r, info: calls.append(info))(reading_handler(record))
    req = Request(method="POST", body=io.BytesIO(b"123456"))
    assert req.content_length == -1

    rr = Response()
    h(rr, req)

    assert isinstance(record.get("error"), MaxBytesError)
    assert record["error"].limit == 5
    assert rr.status == 400
    assert calls == [BodyLimitInfo(limit=5, content_length=-1, source=BodyLimitSource.READ)]


def test_limit_func_overrides_default_read_path():
    calls = []
    record = {}
    h = body_limit(
        100,
        limit_func=lambda r: 5,
        on_reject=lambda r, info: calls.append(info),
    )(reading_handler(record))
    rr = Response()
    h(rr, Request(method="POST", body=io.BytesIO(b"123456")))

    assert "error" in record
    assert rr.status == 400
    assert len(calls) == 1
    assert calls[0].source is BodyLimitSource.READ
    assert calls[0].limit == 5
    assert calls[0].content_length == -1


def test_limit_func_skip():
    record = {}
    h = body_limit(5, limit_func=lambda r: None)(reading_handler(record))
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))
    assert rr.status == 200
    assert len(record["data"]) == 6


def test_skipped_does_not_call_on_reject():
    calls = []
    record = {}
    h = body_limit(
        5,
        limit_func=lambda r: None,
        on_reject=lambda r, info: calls.append(info),
    )(reading_handler(record))
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))
    assert rr.status == 200
    assert len(record["data"]) == 6
    assert calls == []


def test_limit_func_zero_skips():
    record = {}
    h = body_limit(5, limit_func=lambda r: 0)(reading_handler(record))
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))
    assert rr.status == 200
    assert len(record["data"]) == 6


def test_does_not_reject_when_content_length_equals_limit():
    calls = []
    record = {}
    h = body_limit(6, on_reject=lambda r, info: calls.append(info))(reading_handler(record))
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))
    assert rr.status == 200
    assert len(record["data"]) == 6
    assert calls == []


def test_unknown_length_within_limit_does_not_call_on_reject():
    calls = []
    record = {}
    h = body_limit(5, on_reject=lambda r, info: calls.append(info))(reading_handler(record))
    req = Request(method="POST", body=io.BytesIO(b"12345"))
    assert req.content_length == -1
    rr = Response()
    h(rr, req)
    assert rr.status == 200
    assert record["data"] == b"12345"
    assert calls == []


@pytest.mark.parametrize("limit", [0, -1])
def test_zero_or_negative_limit_skips(limit):
    record = {}
    h = body_limit(limit)(reading_handler(record))
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))
    assert rr.status == 200
    assert len(record["data"]) == 6


def test_on_reject_exception_is_swallowed(capsys):
    def hook(request, info):
        raise RuntimeError("boom")

    def next_handler(response, request):
        raise AssertionError("downstream should not be called")

    h = body_limit(5, on_reject=hook)(next_handler)
    rr = Response()
    h(rr, Request(method="POST", body=b"123456"))
    assert rr.status == 413
    assert "boom" in capsys.readouterr().err


def test_on_reject_exception_is_swallowed_on_read_path(capsys):
    def hook(request, info):
        raise RuntimeError("boom")

    def next_handler(response, request):
        try:
            request.body.read()
        except MaxBytesError:
            pass
        response.write_header(400)

    h = body_limit(5, on_reject=hook)(next_handler)
    rr = Response()
    h(rr, Request(method="POST", body=io.BytesIO(b"123456")))
    assert rr.status == 400
    assert "boom" in capsys.readouterr().err


def test_raises_on_nil_next():
    with pytest.raises(TypeError):
        body_limit(5)(None)


def test_raises_on_nil_request():
    def next_handler(response, request):
        raise AssertionError("should not reach next handler")

    with pytest.raises(TypeError):
        body_limit(5)(next_handler)(Response(), None)


def test_nil_body_is_treated_as_no_body():
    record = {}
    h = body_limit(5)(reading_handler(record))
    req = Request(method="POST", body=None, content_length=0)
    rr = Response()
    h(rr, req)
    assert rr.status == 200
    assert record["data"] == b""


def test_chunked_reads_fail_once_past_limit():
    captured = {}
    h = body_limit(5)(capturing_handler(captured))
    h(Response(), Request(method="POST", body=io.BytesIO(b"123456")))

    body = captured["body"]
    assert body.read(2) == b"12"
    assert body.read(2) == b"34"
    with pytest.raises(MaxBytesError) as excinfo:
        body.read(2)
    assert excinfo.value.limit == 5


def test_read_after_exceed_keeps_failing():
    captured = {}
    h = body_limit(5)(capturing_handler(captured))
    h(Response(), Request(method="POST", body=io.BytesIO(b"123456")))

    body = captured["body"]
    with pytest.raises(MaxBytesError) as first:
        body.read()
    assert first.value.limit == 5
    with pytest.raises(MaxBytesError) as second:
        body.read()
    assert second.value.limit == 5