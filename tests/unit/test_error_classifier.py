"""
Tests for cluster error classification and operator guidance.
"""

import subprocess

import pytest
from kubernetes.client.exceptions import ApiException
from remediation_agent.core.constants import NAMESPACE_NOT_FOUND_SUGGESTION, NOT_FOUND_SUGGESTION
from remediation_agent.services.error_classifier import classify, error_message


class TestErrorClassification:
    """Test kubectl/API error categories"""

    @pytest.mark.parametrize(
        "raw_error",
        [
            "Unable to connect to the server: dial tcp 10.0.0.1:6443: connect: connection refused",
            "Unable to connect to the server: dial tcp: lookup api.example.com: no such host",
            "context deadline exceeded",
            "network is unreachable",
        ],
    )
    def test_network_errors(self, raw_error):
        assert classify(raw_error).category == "network"

    @pytest.mark.parametrize(
        "raw_error",
        [
            "error: You must be logged in to the server (Unauthorized)",
            "x509: certificate signed by unknown authority",
            "invalid bearer token",
        ],
    )
    def test_authentication_errors(self, raw_error):
        assert classify(raw_error).category == "authentication"

    def test_authorization_error(self):
        raw = 'Error from server (Forbidden): pods is forbidden: User "dev" cannot list resource "pods"'
        result = classify(raw)

        assert result.category == "authorization"
        assert "kubectl auth can-i" in result.enhanced_message

    def test_named_resource_not_found(self):
        raw = 'Error from server (NotFound): persistentvolumeclaims "data" not found'
        result = classify(raw, command="kubectl get pvc/data -o yaml")

        assert result.category == "api-availability"
        assert NOT_FOUND_SUGGESTION in result.enhanced_message
        assert "list available resources first" in result.enhanced_message
        assert result.command == "kubectl get pvc/data -o yaml"

    @pytest.mark.parametrize(
        "raw_error",
        [
            'Error from server (NotFound): pods "timeout-job" not found',
            'Error from server (NotFound): certificatesigningrequests.certificates.k8s.io "csr-x" not found',
            'Error from server (NotFound): jobs.batch "unreachable-probe" not found',
        ],
    )
    def test_quoted_name_keywords_do_not_change_category(self, raw_error):
        result = classify(raw_error)

        assert result.category == "api-availability"
        assert NOT_FOUND_SUGGESTION in result.enhanced_message

    def test_missing_namespace(self):
        result = classify('Error from server (NotFound): namespaces "payments" not found')

        assert result.category == "api-availability"
        assert NAMESPACE_NOT_FOUND_SUGGESTION in result.enhanced_message
        assert "Try listing available namespaces first" in result.enhanced_message
        assert "- kubectl get namespaces" in result.enhanced_message

    def test_unknown_resource_type(self):
        raw = 'error: the server doesn\'t have a resource type "widgets"'
        result = classify(raw)

        assert result.category == "api-availability"
        assert "kubectl api-resources" in result.enhanced_message

    def test_missing_context(self):
        result = classify('error: context "staging" does not exist')

        assert result.category == "kubeconfig"
        assert "kubectl config get-contexts" in result.enhanced_message

    def test_version_skew(self):
        assert classify("WARNING: version skew between client and server").category == "version"

    def test_unrecognized_error_falls_back_to_unknown(self):
        result = classify("something odd happened")

        assert result.category == "unknown"
        assert "Original error: something odd happened" in result.enhanced_message


class TestEnhancedMessages:
    """Test guidance text attached to classified errors"""

    def test_dns_failure_mentions_endpoint_configuration(self):
        result = classify("dial tcp: lookup cluster.internal: no such host")

        assert "Verify DNS/endpoint configuration" in result.enhanced_message

    def test_every_message_has_diagnostic_commands_and_suggestion(self):
        for raw in ["connection refused", "Unauthorized", "forbidden", '"x" not found', "kubeconfig missing", "???"]:
            message = classify(raw).enhanced_message
            assert "Diagnostic commands:" in message, raw
            assert "Suggestion:" in message, raw


class TestRawErrorShapes:
    """Test non-string inputs"""

    @pytest.mark.parametrize(
        "status,category",
        [(401, "authentication"), (403, "authorization"), (404, "api-availability")],
    )
    def test_api_exception_status_codes(self, status, category):
        assert classify(ApiException(status=status, reason="Denied")).category == category

    def test_subprocess_timeout_is_network(self):
        error = subprocess.TimeoutExpired(cmd=["kubectl", "get", "pods"], timeout=30)

        assert "30" in error_message(error)
        assert classify(error).category == "network"
