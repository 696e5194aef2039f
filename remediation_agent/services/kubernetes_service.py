# remediation_agent/services/kubernetes_service.py
import logging
import os
import re
import shlex
import subprocess
from typing import List, Optional, Tuple

from kubernetes import client, config

from remediation_agent.core.exceptions import KubectlCommandError, TransientInfrastructureError

logger = logging.getLogger(__name__)

# Any of these on the command line means more than one plain kubectl call
_SHELL_CONTROL = re.compile(r"[;&|`<>\n]|\$\(|\$\{")
# "<<EOF", "<< 'EOF'", "<<-\"EOF\"" at the end of the first line
_HEREDOC = re.compile(r"\s*<<(-?)\s*(['\"]?)([A-Za-z_][A-Za-z0-9_]*)\2\s*$")


def parse_mutating_command(command: str) -> Tuple[List[str], Optional[str]]:
    """
    Splits a planner command into kubectl args (binary dropped) and an
    optional heredoc body for stdin.

    Accepted shapes are a single ``kubectl ...`` line, or that line ending in a
    heredoc marker followed by the body and the terminator as the very last
    line. Everything else is refused.
    """
    lines = command.strip().split("\n")
    command_line = lines[0].rstrip()
    stdin = None

    heredoc = _HEREDOC.search(command_line)
    if heredoc:
        terminator = heredoc.group(3)
        body = [line.rstrip("\r") for line in lines[1:]]
        # "<<-" strips leading tabs, as the shell would
        if heredoc.group(1):
            body = [line.lstrip("\t") for line in body]
        # Terminator must close the body exactly once, on the last line
        if not body or body[-1].strip() != terminator or any(l.strip() == terminator for l in body[:-1]):
            raise KubectlCommandError(
                f"Refusing to run command with malformed heredoc: {command[:80]}", command=command)
        command_line = command_line[:heredoc.start()]
        stdin = "\n".join(body[:-1]) + "\n"
    elif len(lines) > 1:
        raise KubectlCommandError(f"Refusing to run multi-line command: {command[:80]}", command=command)

    if _SHELL_CONTROL.search(command_line):
        raise KubectlCommandError(f"Refusing to run chained shell command: {command[:80]}", command=command)

    try:
        argv = shlex.split(command_line)
    except ValueError as e:
        raise KubectlCommandError(f"Refusing to run unparseable command: {e}", command=command) from e
    if len(argv) < 2 or argv[0] != "kubectl":
        raise KubectlCommandError(f"Refusing to run non-kubectl command: {command[:80]}", command=command)
    return argv[1:], stdin


class KubernetesService:
    """
    Cluster access for the remediation engine.

    The official client is used for configuration loading and API discovery;
    diagnostic and remediation commands go through the kubectl binary so the
    exact command text can be shown to operators and recorded in sessions.
    """

    def __init__(self, kubeconfig_path: Optional[str] = None, context: Optional[str] = None,
                 kubectl_binary: str = "kubectl"):
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self.kubectl_binary = kubectl_binary
        self.core_api: Optional[client.CoreV1Api] = None
        self.apis_api: Optional[client.ApisApi] = None
        self._load_config()

    def _load_config(self):
        """Loads Kubernetes configuration."""
        try:
            # Prioritize in-cluster config
            if os.getenv("KUBERNETES_SERVICE_HOST") and not self.kubeconfig_path:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes config.")
            # Then check explicit path from settings
            elif self.kubeconfig_path and os.path.exists(self.kubeconfig_path):
                config.load_kube_config(config_file=self.kubeconfig_path, context=self.context)
                logger.info(f"Loaded Kubernetes config from: {self.kubeconfig_path}")
            # Fallback to default kubeconfig location
            else:
                config.load_kube_config(context=self.context)
                logger.info("Loaded default Kubernetes config (kubeconfig).")

            self.core_api = client.CoreV1Api()
            self.apis_api = client.ApisApi()
            logger.info("Kubernetes API clients initialized.")

        except config.ConfigException as e:
            logger.warning(f"Could not load Kubernetes config (normal if not in-cluster or no kubeconfig): {e}")
            self.core_api = None
            self.apis_api = None
        except Exception as e:
            logger.error(f"Unexpected error configuring Kubernetes client: {e}", exc_info=True)
            self.core_api = None
            self.apis_api = None

    def is_available(self) -> bool:
        """Check if K8s clients are initialized."""
        return self.core_api is not None

    def discover_api_resources(self) -> str:
        """
        Lists the resource types the cluster serves, for the investigation prompt.

        Raises:
            TransientInfrastructureError: client not configured.
            ApiException: the API server rejected discovery.
        """
        if not self.is_available():
            raise TransientInfrastructureError("kubeconfig not loaded: Kubernetes client is not available")

        core = self.core_api.get_api_resources(_request_timeout=10)
        core_names = sorted(r.name for r in core.resources if "/" not in r.name)
        lines = [f"core/v1: {', '.join(core_names)}"]

        groups = self.apis_api.get_api_versions(_request_timeout=10)
        for group in groups.groups or []:
            preferred = group.preferred_version.group_version if group.preferred_version else group.name
            lines.append(preferred)

        logger.debug(f"Discovered {len(core_names)} core resources and {len(groups.groups or [])} API groups.")
        return "\n".join(lines)

    def _base_args(self) -> List[str]:
        args = [self.kubectl_binary]
        if self.kubeconfig_path:
            args += ["--kubeconfig", self.kubeconfig_path]
        if self.context:
            args += ["--context", self.context]
        return args

    def kubectl_command(self, args: List[str]) -> List[str]:
        return self._base_args() + list(args)

    def run_readonly(self, args: List[str], timeout: float) -> str:
        """
        Runs a kubectl argv (no shell) and returns stdout.

        Raises:
            KubectlCommandError: non-zero exit.
            subprocess.TimeoutExpired: the command outlived ``timeout``.
            FileNotFoundError: kubectl is not installed.
        """
        argv = self.kubectl_command(args)
        command = shlex.join(argv)
        logger.debug(f"Running read-only command: {command}")
        completed = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=False)
        if completed.returncode != 0:
            raise KubectlCommandError(
                (completed.stderr or completed.stdout).strip() or f"kubectl exited with code {completed.returncode}",
                command=command,
                exit_code=completed.returncode,
            )
        return completed.stdout.strip()

    def run_mutating(self, command: str, timeout: float) -> str:
        """
        Runs one planner-authored kubectl command without a shell. A heredoc
        manifest (``kubectl apply -f - <<EOF``) is fed to kubectl on stdin.

        Raises:
            KubectlCommandError: not a single kubectl invocation, or non-zero exit.
            subprocess.TimeoutExpired: the command outlived ``timeout``.
        """
        stripped = command.strip()
        args, stdin = parse_mutating_command(stripped)

        argv = self.kubectl_command(args)
        logger.info(f"Executing remediation command: {shlex.join(argv)}")
        completed = subprocess.run(
            argv, input=stdin, capture_output=True, text=True, timeout=timeout, check=False,
        )
        if completed.returncode != 0:
            raise KubectlCommandError(
                (completed.stderr or completed.stdout).strip() or f"kubectl exited with code {completed.returncode}",
                command=stripped,
                exit_code=completed.returncode,
            )
        return completed.stdout.strip()
