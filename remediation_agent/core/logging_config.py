# remediation_agent/core/logging_config.py
import logging
from .config import settings

def setup_logging(level: str = None):
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # The Kubernetes and Groq clients log every HTTP round trip at INFO/DEBUG
    for noisy in ("urllib3", "kubernetes", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
