"""
Tests for the process-wide metrics collector.
"""

from src.core.metrics import MetricsCollector


def test_counter_labels_are_order_independent():
    m = MetricsCollector()
    m.increment("agentsim_commands_total", {"command": "start", "status": "success"})
    m.increment("agentsim_commands_total", {"status": "success", "command": "start"})

    assert m.get_counter("agentsim_commands_total", {"command": "start", "status": "success"}) == 2
    assert m.get_counter("agentsim_commands_total", {"command": "pause", "status": "success"}) == 0


def test_gauge_moves_both_ways():
    m = MetricsCollector()
    m.add_gauge("agentsim_sessions_active", value=1)
    m.add_gauge("agentsim_sessions_active", value=1)
    m.add_gauge("agentsim_sessions_active", value=-1)

    assert m.get_gauge("agentsim_sessions_active") == 1


def test_summary():
    m = MetricsCollector()
    for v in (0.1, 0.2, 0.3):
        m.observe("agentsim_tick_duration_seconds", value=v)

    stats = m.get_summary("agentsim_tick_duration_seconds")
    assert stats["count"] == 3
    assert abs(stats["sum"] - 0.6) < 1e-9
    assert m.get_summary("agentsim_llm_latency_seconds")["count"] == 0


def test_prometheus_format():
    m = MetricsCollector()
    m.increment("agentsim_ticks_total")
    m.add_gauge("agentsim_sessions_active", value=2)
    m.observe("agentsim_llm_latency_seconds", {"provider": "ollama", "model": "llama3.1:8b"}, value=0.5)

    text = m.prometheus_format()

    assert "# HELP agentsim_ticks_total Simulation ticks executed" in text
    assert "# TYPE agentsim_ticks_total counter" in text
    assert "agentsim_ticks_total 1" in text
    assert "# TYPE agentsim_sessions_active gauge" in text
    assert "agentsim_sessions_active 2.0" in text
    assert "# TYPE agentsim_llm_latency_seconds summary" in text
    assert 'agentsim_llm_latency_seconds_count{model="llama3.1:8b",provider="ollama"} 1' in text
