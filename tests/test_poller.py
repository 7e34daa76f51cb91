"""Tests for the poll loop and dispatch to evaluators."""
from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from conftest import BASELINE_VALUES, samples_from
from outlier.exceptions import QueryError
from outlier.nelson.registry import SeriesRegistry
from outlier.nelson.rules import ALL_RULES
from outlier.query.client import QueryResult, SeriesData
from outlier.query.poller import SeriesPoller, run_pollers

LABELS = {"__name__": "response_time", "variance": "wild"}
KEY = 'response_time{variance="wild"}'


def _matrix(values: list[float], start: float = 100_000.0, labels: dict[str, str] = LABELS) -> QueryResult:
    return QueryResult("matrix", [SeriesData(dict(labels), samples_from(values, start=start))])


def _poller(client: MagicMock, sink: MagicMock, registry: SeriesRegistry | None = None, **kwargs) -> SeriesPoller:
    return SeriesPoller(
        "response_time",
        client,
        registry if registry is not None else SeriesRegistry(),
        sink,
        sample_size=10,
        rules=kwargs.pop("rules", ALL_RULES),
        interval=30,
        **kwargs,
    )


class TestPollOnce:
    def test_query_text(self) -> None:
        poller = _poller(MagicMock(), MagicMock(), offset=300)
        assert poller.query == "response_time [30s] offset 5m"

    def test_baseline_then_violation_reaches_sink(self) -> None:
        client, sink = MagicMock(), MagicMock()
        registry = SeriesRegistry()
        poller = _poller(client, sink, registry)

        client.query.return_value = _matrix(BASELINE_VALUES)
        assert poller.poll_once(at=1.0) == []
        assert registry.get(KEY).ready

        client.query.return_value = _matrix([9.0, 10.0, 18.0, 11.0], start=200_000.0)
        violations = poller.poll_once(at=31.0)

        assert [v.rule for v in violations] == ["Rule1"]
        sink.add.assert_called_once_with("Rule1", KEY, 1)
        client.query.assert_called_with("response_time [30s]", 31.0)

    def test_unsorted_points_are_fed_oldest_first(self) -> None:
        client, sink = MagicMock(), MagicMock()
        registry = SeriesRegistry()
        poller = _poller(client, sink, registry)

        batch = samples_from(BASELINE_VALUES + [9.0, 11.0, 10.0] + [11.0] * 9 + [8.0])
        client.query.return_value = QueryResult("matrix", [SeriesData(dict(LABELS), list(reversed(batch)))])

        violations = poller.poll_once(at=1.0)
        assert [v.rule for v in violations] == ["Rule2"]
        assert registry.get(KEY).violations == {"Rule2": 1}

    def test_series_are_tracked_independently(self) -> None:
        client, sink = MagicMock(), MagicMock()
        registry = SeriesRegistry()
        poller = _poller(client, sink, registry)
        stable = {"__name__": "response_time", "variance": "stable"}

        client.query.return_value = QueryResult("matrix", [
            SeriesData(dict(LABELS), samples_from(BASELINE_VALUES)),
            SeriesData(stable, samples_from(BASELINE_VALUES[:5])),
        ])
        poller.poll_once(at=1.0)

        assert registry.keys() == ['response_time{variance="stable"}', KEY]
        assert registry.get(KEY).ready
        assert not registry.get('response_time{variance="stable"}').ready

    @pytest.mark.parametrize("result_type", ["vector", "scalar", "string"])
    def test_non_matrix_results_dropped(self, result_type: str) -> None:
        client, sink = MagicMock(), MagicMock()
        registry = SeriesRegistry()
        poller = _poller(client, sink, registry)
        client.query.return_value = QueryResult(result_type, [SeriesData(dict(LABELS), samples_from([1.0]))])

        assert poller.poll_once(at=1.0) == []
        assert len(registry) == 0
        sink.add.assert_not_called()


class TestRetries:
    def test_error_propagates_without_retries(self) -> None:
        client = MagicMock()
        client.query.side_effect = QueryError("down")
        poller = _poller(client, MagicMock())
        with pytest.raises(QueryError, match="down"):
            poller.poll_with_retries(at=1.0)
        assert client.query.call_count == 1

    def test_retries_then_succeeds(self) -> None:
        client = MagicMock()
        client.query.side_effect = [QueryError("blip"), _matrix([1.0])]
        poller = _poller(client, MagicMock(), retries=2, retry_backoff=0)
        assert poller.poll_with_retries(at=1.0, stop=threading.Event()) == []
        assert client.query.call_count == 2

    def test_retries_exhausted(self) -> None:
        client = MagicMock()
        client.query.side_effect = QueryError("down")
        poller = _poller(client, MagicMock(), retries=2, retry_backoff=0)
        with pytest.raises(QueryError):
            poller.poll_with_retries(at=1.0, stop=threading.Event())
        assert client.query.call_count == 3


class TestRunLoop:
    def test_query_time_advances_by_interval(self) -> None:
        client = MagicMock()
        stop = threading.Event()
        times: list[float] = []

        def fake_query(query: str, at: float) -> QueryResult:
            times.append(at)
            if len(times) == 3:
                stop.set()
            return _matrix([1.0])

        client.query.side_effect = fake_query
        poller = SeriesPoller(
            "response_time", client, SeriesRegistry(), MagicMock(),
            sample_size=10, interval=0.01, clock=lambda: 1000.0,
        )
        poller.run(stop)
        assert times == pytest.approx([1000.0, 1000.01, 1000.02])

    def test_run_pollers_reraises_first_failure(self) -> None:
        failing = MagicMock()
        failing.query.side_effect = QueryError("unreachable")
        healthy = MagicMock()
        healthy.query.return_value = _matrix([1.0])

        stop = threading.Event()
        pollers = [
            SeriesPoller("a", failing, SeriesRegistry(), MagicMock(), interval=0.01),
            SeriesPoller("b", healthy, SeriesRegistry(), MagicMock(), interval=0.01),
        ]
        with pytest.raises(QueryError, match="unreachable"):
            run_pollers(pollers, stop)
        assert stop.is_set()

    def test_run_pollers_without_pollers(self) -> None:
        run_pollers([], threading.Event())
