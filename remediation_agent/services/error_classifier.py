# remediation_agent/services/error_classifier.py
"""
Maps raw cluster failures onto a category plus operator guidance.

Rules are evaluated in order and the first match wins. Every enhanced message
carries a one-line diagnosis, read-only commands to run next, a suggestion,
and the original error text so the reasoning step can adapt its next request.
"""
import re
import subprocess
from typing import Callable, List, Optional, Tuple, Union

from kubernetes.client.exceptions import ApiException

from remediation_agent.core.constants import NAMESPACE_NOT_FOUND_SUGGESTION, NOT_FOUND_SUGGESTION
from remediation_agent.models.session import ClassifiedError

RawError = Union[str, BaseException]


def _format(diagnosis: str, commands: List[str], suggestion: str, original: str) -> str:
    steps = "\n".join(f"- {c}" for c in commands)
    return (
        f"{diagnosis}\n\n"
        f"Diagnostic commands:\n{steps}\n\n"
        f"Suggestion: {suggestion}\n\n"
        f"Original error: {original}"
    )


def _enhance_network(message: str) -> str:
    lowered = message.lower()
    if "no such host" in lowered or "enotfound" in lowered or "getaddrinfo" in lowered or "could not resolve" in lowered:
        return _format(
            "DNS resolution failed: cannot resolve the cluster endpoint hostname.",
            ["kubectl config view --minify", "kubectl cluster-info"],
            "Verify DNS/endpoint configuration for the cluster server in kubeconfig, and VPN access for private clusters.",
            message,
        )
    if "timeout" in lowered or "timed out" in lowered or "deadline exceeded" in lowered:
        return _format(
            "Connection timeout: the cluster did not answer within the timeout period.",
            ["kubectl get nodes", "kubectl cluster-info"],
            "Check network latency, firewall and proxy settings; narrow the request (single namespace, named resource) if the API server is slow.",
            message,
        )
    return _format(
        "Network connectivity issue: the cluster API server is unreachable.",
        ["kubectl cluster-info", "kubectl config view --minify"],
        "Verify the cluster is running and the endpoint is reachable from this host.",
        message,
    )


def _enhance_authentication(message: str) -> str:
    lowered = message.lower()
    if "bearer token" in lowered or "token has expired" in lowered:
        return _format(
            "Authentication failed: the bearer token is invalid or expired.",
            ["kubectl config view --minify", "kubectl auth whoami"],
            "Refresh the credentials referenced by the current kubeconfig user.",
            message,
        )
    if "x509" in lowered or "certificate" in lowered:
        return _format(
            "Certificate authentication failed: client or CA certificate was rejected.",
            ["kubectl config view --minify --raw", "kubectl cluster-info"],
            "Check certificate paths and expiry in kubeconfig and that the CA bundle matches the cluster.",
            message,
        )
    return _format(
        "Authentication failed: invalid or missing credentials.",
        ["kubectl auth whoami", "kubectl config view --minify"],
        "Re-authenticate with the cluster and verify the kubeconfig user entry.",
        message,
    )


def _enhance_authorization(message: str) -> str:
    return _format(
        "Insufficient permissions: RBAC denies this operation for the current identity.",
        ["kubectl auth can-i --list", "kubectl auth whoami"],
        "Check RBAC roles and bindings for read access to this resource; verify with 'kubectl auth can-i get <resource> -n <namespace>'.",
        message,
    )


def _enhance_api_availability(message: str) -> str:
    lowered = message.lower()
    if _NAMESPACE_NOT_FOUND.search(message):
        return _format(
            "Namespace not found: the requested namespace does not exist in this cluster.",
            ["kubectl get namespaces"],
            NAMESPACE_NOT_FOUND_SUGGESTION,
            message,
        )
    if _is_named_not_found(message):
        return _format(
            "Resource not found: the named object does not exist where it was requested.",
            ["kubectl get <kind> -n <namespace>", "kubectl get <kind> --all-namespaces"],
            NOT_FOUND_SUGGESTION,
            message,
        )
    if "no matches for kind" in lowered or "in version" in lowered:
        return _format(
            "API version not served: the cluster does not serve the requested kind/version.",
            ["kubectl api-versions", "kubectl api-resources"],
            "Use an API version the cluster serves, or install the CRD that provides this kind.",
            message,
        )
    return _format(
        "API resource not available: the requested resource type is unknown to this cluster.",
        ["kubectl api-resources", "kubectl api-versions"],
        "Check the resource type name against 'kubectl api-resources' before retrying.",
        message,
    )


def _enhance_kubeconfig(message: str) -> str:
    lowered = message.lower()
    if "context" in lowered and "does not exist" in lowered:
        return _format(
            "Context not found: the requested context is missing from kubeconfig.",
            ["kubectl config get-contexts", "kubectl config current-context"],
            "Select an existing context or fix the configured context name.",
            message,
        )
    return _format(
        "Kubeconfig problem: the client configuration is missing or invalid.",
        ["kubectl config view", "kubectl config get-contexts"],
        "Point KUBE_CONFIG_PATH at a valid kubeconfig or provide in-cluster credentials.",
        message,
    )


def _enhance_version(message: str) -> str:
    return _format(
        "Version compatibility issue: client and server versions disagree.",
        ["kubectl version", "kubectl api-versions"],
        "Align the kubectl client with the server version (within one minor release).",
        message,
    )


def _enhance_unknown(message: str) -> str:
    return _format(
        "Command failed for an unrecognized reason.",
        ["kubectl cluster-info", "kubectl config view --minify"],
        "Verify cluster connectivity and the request parameters, then retry with a narrower request.",
        message,
    )


# kubectl not-found shape, matched ahead of the keyword rules (quoted names
# can contain "timeout", "certificate" and the like)
_NAMED_NOT_FOUND = re.compile(r"\(NotFound\)|\"[^\"]+\" not found")
_NAMESPACE_NOT_FOUND = re.compile(r"namespaces? \"[^\"]+\" not found", re.IGNORECASE)


def _is_named_not_found(message: str) -> bool:
    return bool(_NAMED_NOT_FOUND.search(message))


_NETWORK = re.compile(
    r"timeout|timed out|deadline exceeded|connection refused|econnrefused|no such host|enotfound|"
    r"getaddrinfo|could not resolve|network is unreachable|unreachable|dial tcp|i/o timeout|"
    r"unable to connect to the server",
    re.IGNORECASE,
)
_AUTHENTICATION = re.compile(
    r"unauthorized|invalid bearer token|token has expired|x509|certificate|"
    r"must be logged in|provide credentials|authentication required",
    re.IGNORECASE,
)
_AUTHORIZATION = re.compile(
    r"forbidden|cannot (list|get|create|watch|patch|delete)|rbac|permission denied",
    re.IGNORECASE,
)
_API_AVAILABILITY = re.compile(
    r"server could not find|doesn't have a resource type|no matches for kind|"
    r"resource type .* not found",
    re.IGNORECASE,
)
_KUBECONFIG = re.compile(
    r"context .* does not exist|kubeconfig|invalid configuration|no configuration has been provided|"
    r"config.* not found|no auth provider",
    re.IGNORECASE,
)
_VERSION = re.compile(
    r"server version|version skew|unsupported.*version|version.*too old|incompatible.*version",
    re.IGNORECASE,
)

RULES: List[Tuple[str, "re.Pattern[str]", Callable[[str], str]]] = [
    ("api-availability", _NAMED_NOT_FOUND, _enhance_api_availability),
    ("network", _NETWORK, _enhance_network),
    ("authentication", _AUTHENTICATION, _enhance_authentication),
    ("authorization", _AUTHORIZATION, _enhance_authorization),
    ("api-availability", _API_AVAILABILITY, _enhance_api_availability),
    ("kubeconfig", _KUBECONFIG, _enhance_kubeconfig),
    ("version", _VERSION, _enhance_version),
]

_STATUS_CATEGORIES = {
    401: ("authentication", _enhance_authentication),
    403: ("authorization", _enhance_authorization),
    404: ("api-availability", _enhance_api_availability),
}


def error_message(raw_error: RawError) -> str:
    """Best human-readable text for a raw failure."""
    if isinstance(raw_error, str):
        return raw_error
    if isinstance(raw_error, ApiException):
        body = raw_error.body.decode() if isinstance(raw_error.body, bytes) else raw_error.body
        return f"({raw_error.reason}) status {raw_error.status}: {body or ''}".strip()
    if isinstance(raw_error, subprocess.TimeoutExpired):
        return f"timeout: command did not finish within {raw_error.timeout}s"
    return str(raw_error) or raw_error.__class__.__name__


def classify(raw_error: RawError, command: Optional[str] = None) -> ClassifiedError:
    message = error_message(raw_error)

    if isinstance(raw_error, ApiException) and raw_error.status in _STATUS_CATEGORIES:
        category, enhance = _STATUS_CATEGORIES[raw_error.status]
        return ClassifiedError(category=category, enhanced_message=enhance(message), command=command)

    for category, pattern, enhance in RULES:
        if pattern.search(message):
            return ClassifiedError(category=category, enhanced_message=enhance(message), command=command)

    return ClassifiedError(category="unknown", enhanced_message=_enhance_unknown(message), command=command)
