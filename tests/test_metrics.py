from provisioner.metrics import Metrics


def test_counters_accumulate():
    counters = Metrics()
    counters.inc("compile_success_total")
    counters.inc("compile_success_total", 2)
    assert counters.get("compile_success_total") == 3
    assert counters.get("deploy_success_total") == 0


def test_snapshot_is_a_copy():
    counters = Metrics()
    counters.inc("compile_failed_network_total")
    snapshot = counters.snapshot()
    counters.inc("compile_failed_network_total")
    assert snapshot == {"compile_failed_network_total": 1}
