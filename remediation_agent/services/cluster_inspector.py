# remediation_agent/services/cluster_inspector.py
import logging
import re
import shlex
import subprocess
from typing import List, Union

from remediation_agent.core.constants import INSPECTION_TIMEOUT_SECONDS, LOG_TAIL_LINES, SAFE_OPERATIONS
from remediation_agent.core.exceptions import KubectlCommandError
from remediation_agent.models.session import (
    NAMESPACE_PATTERN,
    RESOURCE_PATTERN,
    ClassifiedError,
    DataRequest,
)
from remediation_agent.services.error_classifier import classify
from remediation_agent.services.kubernetes_service import KubernetesService

logger = logging.getLogger(__name__)


def rejection(op_type: str, resource: str, reason: str) -> ClassifiedError:
    """Validation error for a request that must never reach the cluster."""
    return ClassifiedError(
        category="validation",
        enhanced_message=(
            f"Rejected data request '{op_type} {resource}': {reason}\n\n"
            f"Only read-only operations are permitted: {', '.join(SAFE_OPERATIONS)}. "
            f"Resources are given as 'kind' or 'kind/name' without extra flags."
        ),
    )


def build_args(request: DataRequest) -> List[str]:
    """kubectl argv (without the binary) for one read-only data request."""
    ns = ["-n", request.namespace] if request.namespace else []

    if request.type == "get":
        return ["get", request.resource, *ns, "-o", "yaml"]
    if request.type == "describe":
        return ["describe", request.resource, *ns]
    if request.type == "events":
        name = request.resource.split("/")[-1]
        selector = [] if name in ("events", "event", "ev", "all") else [
            "--field-selector", f"involvedObject.name={name}"]
        return ["get", "events", *selector, *ns, "-o", "yaml"]
    if request.type == "logs":
        return ["logs", request.resource, *ns, f"--tail={LOG_TAIL_LINES}"]
    if request.type == "top":
        # kubectl top wants "pod NAME", not "pod/NAME"
        return ["top", *request.resource.split("/", 1), *ns]
    raise ValueError(f"Unsupported operation: {request.type}")


class ClusterInspector:
    def __init__(self, k8s_service: KubernetesService, timeout: float = INSPECTION_TIMEOUT_SECONDS):
        self.k8s_service = k8s_service
        self.timeout = timeout

    def inspect(self, request: DataRequest) -> Union[str, ClassifiedError]:
        """Runs one whitelisted read-only operation; failures come back classified."""
        # DataRequest rejects these at construction; checked again in case one was built unvalidated
        if request.type not in SAFE_OPERATIONS:
            logger.warning(f"Rejected unsafe operation '{request.type}' on '{request.resource}'.")
            return rejection(request.type, request.resource, f"operation '{request.type}' is not permitted.")
        if not re.match(RESOURCE_PATTERN, request.resource or "") or (
                request.namespace and not re.match(NAMESPACE_PATTERN, request.namespace)):
            logger.warning(f"Rejected malformed resource/namespace in request '{request.type} {request.resource}'.")
            return rejection(request.type, request.resource, "resource or namespace contains invalid characters.")

        # --- Build and run the command ---
        args = build_args(request)
        command = shlex.join(self.k8s_service.kubectl_command(args))
        logger.info(f"Inspecting: {command} ({request.rationale})")

        try:
            output = self.k8s_service.run_readonly(args, timeout=self.timeout)
        except KubectlCommandError as e:
            classified = classify(e.message, command=command)
        except subprocess.TimeoutExpired as e:
            classified = classify(e, command=command)
        except FileNotFoundError: # kubectl not installed
            classified = classify(f"kubectl binary '{self.k8s_service.kubectl_binary}' not found in PATH", command=command)
        else:
            logger.debug(f"Inspection returned {len(output)} characters.")
            return output

        logger.warning(f"Inspection failed ({classified.category}): {command}")
        return classified
