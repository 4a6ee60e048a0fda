"""
Unit tests for the operator entry point: probes, cleanup and main().
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kubeconfig_operator import operator
from kubeconfig_operator.observability.health import HealthCheckResult


def result(name, status):
    return HealthCheckResult(name=name, status=status, message="")


class TestProbes:
    async def test_health_reports_overall_status(self):
        checker = MagicMock()
        checker.check_all = AsyncMock(return_value={})
        checker.get_overall_health.return_value = "healthy"

        with patch.object(operator, "HealthChecker", return_value=checker):
            response = await operator.health_check()

        assert response == {"status": "healthy", "operator": "kubeconfig-operator"}

    async def test_health_failure_is_reported(self):
        with patch.object(operator, "HealthChecker", side_effect=RuntimeError("boom")):
            response = await operator.health_check()

        assert response["status"] == "unhealthy"
        assert response["error"] == "boom"

    @pytest.mark.parametrize(
        "statuses,expected",
        [(["healthy", "healthy"], "ready"), (["healthy", "unhealthy"], "not_ready")],
    )
    async def test_readiness(self, statuses, expected):
        checker = MagicMock()
        checker.check_readiness = AsyncMock(
            return_value={
                f"check-{i}": result(f"check-{i}", status)
                for i, status in enumerate(statuses)
            }
        )

        with patch.object(operator, "HealthChecker", return_value=checker):
            response = await operator.readiness_check()

        assert response["status"] == expected


class TestCleanup:
    async def test_stops_metrics_server_and_tracing(self):
        server = MagicMock()
        server.stop = AsyncMock()

        with (
            patch.object(operator, "_global_metrics_server", server),
            patch.object(operator, "shutdown_tracing") as shutdown,
        ):
            await operator.cleanup_handler()
            assert operator._global_metrics_server is None

        server.stop.assert_awaited_once()
        shutdown.assert_called_once()


class TestMain:
    def test_runs_cluster_wide_without_namespaces(self):
        with (
            patch.object(operator, "configure_logging"),
            patch.object(operator, "get_watched_namespaces", return_value=None),
            patch.object(operator.kopf, "run") as run,
        ):
            operator.main()

        assert run.call_args.kwargs["clusterwide"] is True

    def test_runs_namespaced(self):
        with (
            patch.object(operator, "configure_logging"),
            patch.object(operator, "get_watched_namespaces", return_value=["team-a"]),
            patch.object(operator.kopf, "run") as run,
        ):
            operator.main()

        assert run.call_args.kwargs["namespaces"] == ["team-a"]

    def test_failure_exits_non_zero(self):
        with (
            patch.object(operator, "configure_logging"),
            patch.object(operator, "get_watched_namespaces", return_value=None),
            patch.object(operator.kopf, "run", side_effect=RuntimeError("down")),
            pytest.raises(SystemExit) as exc_info,
        ):
            operator.main()

        assert exc_info.value.code == 1


class TestStartupHelpers:
    async def test_metrics_server_port_clash_is_tolerated(self):
        server = MagicMock()
        server.start = AsyncMock(side_effect=OSError("address in use"))

        with patch.object(operator, "MetricsServer", return_value=server):
            assert await operator.start_metrics_server() is None

    def test_falls_back_to_local_kubeconfig(self):
        with (
            patch.object(
                operator.config,
                "load_incluster_config",
                side_effect=operator.config.ConfigException("not in cluster"),
            ),
            patch.object(operator.config, "load_kube_config") as load_kube_config,
        ):
            operator.load_kubernetes_config()

        load_kube_config.assert_called_once()

    def test_no_configuration_raises(self):
        error = operator.config.ConfigException("missing")
        with (
            patch.object(operator.config, "load_incluster_config", side_effect=error),
            patch.object(operator.config, "load_kube_config", side_effect=error),
            pytest.raises(operator.config.ConfigException),
        ):
            operator.load_kubernetes_config()
