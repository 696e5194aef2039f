# remediation_agent/services/llm_service.py
import logging
from typing import Optional

from groq import APIConnectionError, APIError, APITimeoutError, Groq, RateLimitError

from remediation_agent.core.exceptions import AIServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert Kubernetes Site Reliability Engineer investigating live cluster issues. "
    "You may only request read-only diagnostic data. Always answer with the JSON object requested."
)


class ReasoningClient:
    """Sends a composed prompt to the Groq chat API and returns the raw reply text."""

    def __init__(self, api_key: Optional[str], model: str, temperature: float = 0.1,
                 max_tokens: int = 4096, timeout: float = 120.0):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.groq_client = None
        if api_key:
            try:
                # Retries would hide failures from the loop; each failed call is one inconclusive step
                self.groq_client = Groq(api_key=api_key, timeout=timeout, max_retries=0)
                logger.info("Groq client initialized.")
            except Exception as e:
                logger.error(f"Failed to initialize Groq client: {e}", exc_info=True)
                self.groq_client = None
        else:
            logger.warning("Groq API key not set. Reasoning calls will fail.")

    def send(self, prompt: str) -> str:
        if not self.groq_client:
            raise AIServiceError("Reasoning service unavailable: GROQ_API_KEY is not configured")

        try:
            logger.debug(f"Sending prompt to {self.model} ({len(prompt)} characters)...")
            chat_completion = self.groq_client.chat.completions.create(
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except APITimeoutError as e:
            logger.warning(f"Groq request timed out: {e}")
            raise AIServiceError(f"Reasoning service request timed out: {e}") from e
        except RateLimitError as e:
            logger.warning("Groq API rate limit exceeded.")
            raise AIServiceError(f"Reasoning service rate limit exceeded: {e}") from e
        except APIConnectionError as e:
            logger.warning(f"Could not reach Groq API: {e}")
            raise AIServiceError(f"Reasoning service connection refused or unreachable: {e}") from e
        except APIError as e:
            logger.error(f"Groq API error: {e.message}", exc_info=True)
            raise AIServiceError(f"Reasoning service API error: {e.message}") from e

        content = chat_completion.choices[0].message.content or "" # content can be None
        logger.debug(f"Received {len(content)} characters from {self.model}.")
        return content.strip()
