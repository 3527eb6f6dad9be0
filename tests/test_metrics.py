import pytest

from dishola.monitoring.metrics_collector import SearchMetrics


@pytest.mark.asyncio
async def test_counters_keyed_by_labels():
    metrics = SearchMetrics()
    await metrics.increment_counter("searches_total", labels={"kind": "query"})
    await metrics.increment_counter("searches_total", labels={"kind": "query"})
    await metrics.increment_counter("searches_total", labels={"kind": "tastes"})

    counters = metrics.get_metrics()["counters"]
    assert counters == {"searches_total{kind=query}": 2, "searches_total{kind=tastes}": 1}


@pytest.mark.asyncio
async def test_histogram_summary_and_reset():
    metrics = SearchMetrics()
    for value in (120, 80, 400):
        await metrics.record_histogram("db_time_ms", value)

    summary = metrics.get_metrics()["histograms"]["db_time_ms"]
    assert summary == {"count": 3, "avg": 200, "min": 80, "max": 400, "p95": 400, "latest": 400}

    await metrics.reset()
    assert metrics.get_metrics()["histograms"] == {}
