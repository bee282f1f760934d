from dataclasses import dataclass, field

import pytest

from npmf.cursor import SequenceCursor
from npmf.errors import (
    ColdStartError,
    DecodeError,
    FetchError,
    InvalidSequenceError,
    StatusError,
    TransportError,
)
from npmf.http_utils import HttpResponse
from npmf.sources.couch import ChangesSource


BASE = "https://replicate.npmjs.com/registry/"


def _changes_url(since: int) -> str:
    return f"{BASE}_changes?since={since}"


@dataclass
class FakeHttp:
    """
    按 URL 返回预设响应；同一 URL 配置为列表时按顺序弹出（最后一个重复使用）。
    值为异常时直接抛出，模拟传输失败。
    """

    responses: dict[str, object]
    calls: list[str] = field(default_factory=list)

    def get(self, url: str, *, headers=None) -> HttpResponse:  # noqa: ANN001
        self.calls.append(url)
        if url not in self.responses:
            raise KeyError(url)
        value = self.responses[url]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return value


def _source(http: FakeHttp, since: int = 0) -> ChangesSource:
    return ChangesSource(http=http, base_url=BASE, cursor=SequenceCursor(since))


def _poll(src: ChangesSource) -> list:
    outcome = src.fetch()
    src.commit(outcome)
    return outcome.items


def test_fetch_single_change_advances_cursor(json_response) -> None:  # noqa: ANN001
    url = _changes_url(1000)
    payload = {"results": [{"seq": 1001, "id": "foo", "changes": [{"rev": "2-aaa"}]}], "last_seq": 1001}
    src = _source(FakeHttp(responses={url: json_response(url, payload)}), since=1000)

    events = _poll(src)
    assert [e.id for e in events] == ["foo"]
    assert events[0].changes[0].rev == "2-aaa"
    assert src.position() == 1001


def test_cursor_tracks_last_seq_even_without_events(json_response) -> None:  # noqa: ANN001
    batches = [
        (1000, {"results": [], "last_seq": 1005}),
        (1005, {"results": [{"seq": 1006, "id": "a", "changes": [{"rev": "1-a"}]}], "last_seq": 1006}),
        (1006, {"results": [], "last_seq": 1010}),
    ]
    responses = {_changes_url(since): json_response(_changes_url(since), body) for since, body in batches}
    http = FakeHttp(responses=responses)
    src = _source(http, since=1000)

    counts = [len(_poll(src)) for _ in batches]
    assert counts == [0, 1, 0]
    assert src.position() == 1010
    assert http.calls == [_changes_url(1000), _changes_url(1005), _changes_url(1006)]


def test_events_keep_feed_order(json_response) -> None:  # noqa: ANN001
    url = _changes_url(5)
    payload = {
        "results": [
            {"seq": 6, "id": "a", "changes": [{"rev": "1-a"}]},
            {"seq": 7, "id": "b", "changes": [{"rev": "1-b"}], "deleted": True},
            {"seq": 8, "id": "c", "changes": [{"rev": "3-c"}, {"rev": "3-d"}]},
        ],
        "last_seq": 8,
    }
    src = _source(FakeHttp(responses={url: json_response(url, payload)}), since=5)
    events = _poll(src)
    assert [e.seq for e in events] == [6, 7, 8]
    assert events[1].deleted is True
    assert events[2].has_revision("3-d")


@pytest.mark.parametrize(
    "response, cause",
    [
        (HttpResponse(status=503, url=_changes_url(1000), headers={}, body=b""), StatusError),
        (HttpResponse(status=200, url=_changes_url(1000), headers={}, body=b"{not json"), DecodeError),
        (HttpResponse(status=200, url=_changes_url(1000), headers={}, body=b'{"results": []}'), DecodeError),
        (
            HttpResponse(
                status=200,
                url=_changes_url(1000),
                headers={},
                body=b'{"results": [{"seq": 1001, "id": "x", "changes": []}], "last_seq": 1001}',
            ),
            DecodeError,
        ),
        (TransportError("connection refused"), TransportError),
    ],
)
def test_fetch_failure_keeps_cursor(response, cause) -> None:  # noqa: ANN001
    url = _changes_url(1000)
    src = _source(FakeHttp(responses={url: response}), since=1000)

    with pytest.raises(FetchError) as excinfo:
        src.fetch()
    assert excinfo.value.caused_by(cause)
    assert excinfo.value.cursor == 1000
    assert "1000" in str(excinfo.value)
    assert src.position() == 1000


def test_regressing_last_seq_keeps_cursor(json_response, caplog) -> None:  # noqa: ANN001
    url = _changes_url(1000)
    src = _source(FakeHttp(responses={url: json_response(url, {"results": [], "last_seq": 900})}), since=1000)
    assert _poll(src) == []
    assert src.position() == 1000
    assert "last_seq went backwards" in caplog.text


def test_cold_start_sets_sequence(json_response) -> None:  # noqa: ANN001
    src = _source(FakeHttp(responses={BASE: json_response(BASE, {"db_name": "registry", "update_seq": 123456})}))
    assert src.needs_cold_start()
    outcome = src.cold_start()
    assert src.position() == 0
    src.commit(outcome)
    assert src.position() == 123456
    assert not src.needs_cold_start()


@pytest.mark.parametrize("body", [{"update_seq": 0}, {"db_name": "registry"}])
def test_cold_start_zero_is_invalid_sequence(json_response, body) -> None:  # noqa: ANN001
    src = _source(FakeHttp(responses={BASE: json_response(BASE, body)}))
    with pytest.raises(ColdStartError) as excinfo:
        src.cold_start()
    assert excinfo.value.caused_by(InvalidSequenceError)
    assert src.needs_cold_start()


def test_cold_start_non_200(json_response) -> None:  # noqa: ANN001
    src = _source(FakeHttp(responses={BASE: json_response(BASE, {}, status=500)}))
    with pytest.raises(ColdStartError) as excinfo:
        src.cold_start()
    assert excinfo.value.caused_by(StatusError)
    assert "cold_start" in str(excinfo.value)


def test_fetch_leaves_cursor_until_commit(json_response) -> None:  # noqa: ANN001
    url = _changes_url(1000)
    payload = {"results": [{"seq": 1001, "id": "foo", "changes": [{"rev": "2-aaa"}]}], "last_seq": 1001}
    http = FakeHttp(responses={url: json_response(url, payload)})
    src = _source(http, since=1000)

    outcome = src.fetch()
    assert outcome.since == 1000
    assert outcome.position == 1001
    assert src.position() == 1000

    # 未 commit 的结果被丢弃后，下一次拉取仍从同一位置开始
    again = src.fetch()
    assert [e.id for e in again.items] == ["foo"]
    assert http.calls == [url, url]

    src.commit(again)
    assert src.position() == 1001
