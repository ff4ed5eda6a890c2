import time
import asyncio
import logging
from typing import Dict, Any, List, Optional

from langchain_ollama import ChatOllama
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
import httpx

from services.retry import RetryPolicy

logger = logging.getLogger(__name__)


def _is_transient(error: BaseException) -> bool:
    """Timeouts and connection failures are retried; anything else is not."""
    if isinstance(error, (asyncio.TimeoutError, httpx.TransportError, ConnectionError)):
        return True
    error_msg = str(error).lower()
    return "connection" in error_msg or "connect" in error_msg


class OllamaClient:
    """
    LangChain-based Ollama client with retry logic and proper connection handling.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        temperature: float = 0.7,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 180.0,
    ):
        # ChatOllama uses Ollama's native API, not OpenAI-compatible /v1 endpoint
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        elif base_url.endswith("/v1/"):
            base_url = base_url[:-4]

        self.base_url = base_url.rstrip('/')
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=15.0)
        self.timeout = timeout

        self.llm = ChatOllama(
            base_url=self.base_url,
            model=model,
            temperature=temperature,
            num_ctx=8192,
        )

    async def _invoke(self, messages: List[BaseMessage]) -> Any:
        return await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout)

    async def evaluate(self, prompt: str, system: Optional[str] = None) -> Dict[str, Any]:
        """
        Run a prompt and return the response with metadata.
        """
        messages: List[BaseMessage] = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))

        start = time.time()

        response = await self.retry_policy.run(
            lambda: self._invoke(messages),
            label=f"ollama:{self.model}",
            should_retry=_is_transient,
        )

        latency_ms = int((time.time() - start) * 1000)

        return {
            "raw": response,
            "content": response.content,
            "latency_ms": latency_ms,
        }

    async def health_check(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(url)
                if resp.status_code == 200:
                    return True
                logger.error(f"Ollama health check failed: {resp.status_code} {resp.text}")
                return False
        except Exception as e:
            logger.error(f"Ollama health check error: {e} (url={url})")
            return False
