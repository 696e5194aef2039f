# remediation_agent/core/constants.py
"""Fixed limits of the investigation loop. These are not deployment settings."""

# Hard cap on reasoning/inspection cycles per session
MAX_ITERATIONS = 20

# Wall-clock ceiling for every read-only kubectl call
INSPECTION_TIMEOUT_SECONDS = 30

# Read-only kubectl operations the reasoning service may request
SAFE_OPERATIONS = ("get", "describe", "logs", "events", "top")

RISK_ORDER = {"low": 1, "medium": 2, "high": 3}

LOG_TAIL_LINES = 200

# Per-entry character limit when gathered data is echoed back into a prompt
PROMPT_DATA_LIMIT = 4000

WRAP_UP_MESSAGE = (
    "You have reached the maximum number of investigation steps. Provide your final "
    "summary NOW in the required JSON format based on all findings gathered so far, "
    "set investigationComplete to true and do not request any more data."
)

NOT_FOUND_SUGGESTION = (
    "Resource may not exist or may be in a different namespace; list available resources first."
)

NAMESPACE_NOT_FOUND_SUGGESTION = "Namespace does not exist. Try listing available namespaces first."
