"""Tests for the default kubectl/AWS collaborators."""

import json
from unittest.mock import patch

import pytest

from pod_tunnel.common.exceptions import CommandError, DependencyError
from pod_tunnel.tunnel.collaborators import (
    DEFAULT_LOCAL_PORTS,
    EnvironmentIdentity,
    KubeContextSwitcher,
    SSMEndpointResolver,
    StaticPortAllocator,
)
from pod_tunnel.tunnel.models import ServiceKind, TunnelOptions


def ssm_response(value):
    return json.dumps({"Parameter": {"Name": "x", "Value": value}})


class TestEnvironmentIdentity:
    def test_user_variable(self):
        identity = EnvironmentIdentity({"USER": "alice.smith", "USERNAME": "other"})
        assert identity.current_identity() == "alicesmith"

    def test_username_fallback(self):
        assert EnvironmentIdentity({"USERNAME": "bob"}).current_identity() == "bob"

    def test_unknown_when_unset(self):
        assert EnvironmentIdentity({}).current_identity() == "unknown"
        assert EnvironmentIdentity({"USER": "###"}).current_identity() == "unknown"

    def test_email(self):
        identity = EnvironmentIdentity({"EMAIL": "alice@example.com"})
        assert identity.current_email() == "aliceatexample.com"
        assert EnvironmentIdentity({}).current_email() == "unknown"


class TestKubeContextSwitcher:
    """Test cluster context selection."""

    def test_cluster_name_defaults_to_suffix(self):
        switcher = KubeContextSwitcher()
        assert switcher.cluster_name("dev") == "dev-zenith-eks-cluster"

    def test_cluster_name_from_mapping(self):
        switcher = KubeContextSwitcher(clusters={"DEV": "shared-cluster"})
        assert switcher.cluster_name("dev") == "shared-cluster"

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_find_context_matches_arn(self, mock_run, completed):
        mock_run.return_value = completed(
            stdout=(
                "minikube\n"
                "arn:aws:eks:eu-west-2:123456789012:cluster/sit-zenith-eks-cluster\n"
                "arn:aws:eks:eu-west-2:123456789012:cluster/dev-zenith-eks-cluster\n"
            )
        )

        context = KubeContextSwitcher().find_context("dev")

        assert context == (
            "arn:aws:eks:eu-west-2:123456789012:cluster/dev-zenith-eks-cluster"
        )

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_find_context_matches_exact_name(self, mock_run, completed):
        mock_run.return_value = completed(stdout="dev-zenith-eks-cluster\n")
        assert KubeContextSwitcher().find_context("dev") == "dev-zenith-eks-cluster"

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_find_context_ignores_prefix_matches(self, mock_run, completed):
        mock_run.return_value = completed(
            stdout="arn:aws:eks:eu-west-2:1:cluster/dev-zenith-eks-cluster-old\n"
        )

        with pytest.raises(DependencyError, match="no matching kubectl context"):
            KubeContextSwitcher().find_context("dev")

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_ensure_context_switches(self, mock_run, completed):
        mock_run.side_effect = [
            completed(stdout="dev-zenith-eks-cluster\n"),
            completed(),
        ]

        KubeContextSwitcher(kubectl="/usr/bin/kubectl").ensure_context("dev")

        assert mock_run.call_args_list[1][0][0] == [
            "/usr/bin/kubectl",
            "config",
            "use-context",
            "dev-zenith-eks-cluster",
        ]

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_kubectl_failure(self, mock_run):
        mock_run.side_effect = CommandError(["kubectl"], None, "No such file")

        with pytest.raises(DependencyError, match="failed to list kubectl contexts"):
            KubeContextSwitcher().ensure_context("dev")


class TestSSMEndpointResolver:
    """Test endpoint resolution through SSM."""

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_database_endpoint(self, mock_run, completed):
        mock_run.return_value = completed(stdout=ssm_response("db.internal\n"))
        resolver = SSMEndpointResolver(region="eu-west-1")

        host, port = resolver.resolve_endpoint(
            ServiceKind.DB, "dev", TunnelOptions(node_type="write", db_type="command")
        )

        assert (host, port) == ("db.internal", 5432)
        args = mock_run.call_args[0][0]
        assert args[:3] == ["aws", "ssm", "get-parameter"]
        assert args[args.index("--name") + 1] == (
            "/dev/zenith/database/command/db-write-endpoint"
        )
        assert "--with-decryption" in args
        assert args[args.index("--region") + 1] == "eu-west-1"

    @pytest.mark.parametrize(
        "kind,path,port",
        [
            (ServiceKind.REDIS, "/qa/zenith/redis/cluster-endpoint", 6379),
            (ServiceKind.ELASTICSEARCH, "/qa/zenith/elasticsearch/cluster-endpoint", 9200),
            (ServiceKind.KAFKA, "/qa/zenith/kafka/broker", 9092),
            (ServiceKind.MSK, "/qa/zenith/msk/brokers-iam-endpoint", 9098),
            (ServiceKind.RABBITMQ, "/qa/zenith/rabbitmq/brokers-console-url", 443),
        ],
    )
    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_parameter_endpoints(self, mock_run, completed, kind, path, port):
        mock_run.return_value = completed(stdout=ssm_response("host.internal"))

        host, remote_port = SSMEndpointResolver().resolve_endpoint(
            kind, "qa", TunnelOptions()
        )

        assert host == "host.internal"
        assert remote_port == port
        args = mock_run.call_args[0][0]
        assert args[args.index("--name") + 1] == path

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_direct_endpoint_skips_lookup(self, mock_run):
        host, port = SSMEndpointResolver().resolve_endpoint(
            ServiceKind.GRPC, "dev", TunnelOptions(remote_host="svc.local")
        )

        assert (host, port) == ("svc.local", 5001)
        mock_run.assert_not_called()

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_aws_failure(self, mock_run):
        mock_run.side_effect = CommandError(["aws"], 255, "ParameterNotFound")

        with pytest.raises(DependencyError, match="ParameterNotFound"):
            SSMEndpointResolver().resolve_endpoint(
                ServiceKind.REDIS, "dev", TunnelOptions()
            )

    @patch("pod_tunnel.tunnel.collaborators.run_command")
    def test_unexpected_response(self, mock_run, completed):
        mock_run.return_value = completed(stdout='{"Parameter": {}}')

        with pytest.raises(DependencyError, match="failed to parse SSM response"):
            SSMEndpointResolver().get_parameter("/dev/x")


class TestStaticPortAllocator:
    def test_default_ports(self):
        allocator = StaticPortAllocator()
        assert allocator.allocate_local_port("db", "dev") == DEFAULT_LOCAL_PORTS["db"]["dev"]
        assert allocator.allocate_local_port("REDIS", "SND") == 6379

    def test_configured_ports_win(self):
        allocator = StaticPortAllocator({"db": {"dev": 15432}, "msk": {"dev": 19098}})

        assert allocator.allocate_local_port("db", "dev") == 15432
        assert allocator.allocate_local_port("db", "qa") == DEFAULT_LOCAL_PORTS["db"]["qa"]
        assert allocator.allocate_local_port("msk", "dev") == 19098

    def test_missing_mapping(self):
        allocator = StaticPortAllocator(defaults=None)

        with pytest.raises(
            DependencyError,
            match="port mapping not found for service: db in environment: dev",
        ):
            allocator.allocate_local_port("db", "dev")
