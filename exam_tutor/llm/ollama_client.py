"""
Ollama Client - Local LLM inference for grading, summaries and tutor replies.

Two endpoints are used:
- /api/generate: single-prompt calls (grading stages, session summary),
  JSON-constrained when json_mode is set
- /api/chat: multi-turn tutor conversations

A call that still fails after the configured retries raises RuntimeError;
the grading layer treats that as a failed stage.
"""
import json
import time
from typing import Optional, Dict, Any, List
import logging

try:
    import requests
except ImportError:
    requests = None

import config

logger = logging.getLogger(__name__)


class OllamaClient:
    """Client for Ollama local LLM inference."""

    def __init__(
        self,
        base_url: str = config.OLLAMA_BASE_URL,
        model: str = config.OLLAMA_MODEL,
        timeout: int = config.OLLAMA_TIMEOUT,
        max_retries: int = config.LLMConfig.MAX_RETRIES,
        retry_delay: float = config.LLMConfig.RETRY_DELAY,
        verify_connection: bool = True
    ):
        """
        Args:
            base_url: Ollama server URL
            model: Model tag, e.g. 'gemma3:4b'
            timeout: Per-request timeout in seconds
            max_retries: Attempts per call (at least one)
            retry_delay: Seconds between attempts
            verify_connection: Check /api/tags on construction
        """
        if requests is None:
            raise ImportError("requests is required. Install with: pip install requests")

        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

        if verify_connection:
            self._verify_connection()

    def _verify_connection(self):
        """Verify Ollama is running and warn when the model is not pulled."""
        try:
            names = self.list_models()
        except requests.RequestException as e:
            logger.error(f"❌ Could not connect to Ollama at {self.base_url}: {e}")
            raise ConnectionError(
                f"Ollama is not running or not accessible at {self.base_url}. "
                "Please start Ollama with: ollama serve"
            ) from e

        model_base = self.model.split(':')[0]
        if any(model_base in name for name in names):
            logger.info(f"✅ Ollama connected. Model: {self.model}")
        else:
            logger.warning(f"⚠️ Model '{self.model}' may not be available. Available models: {names}")

    def list_models(self) -> List[str]:
        response = requests.get(f"{self.base_url}/api/tags", timeout=10)
        response.raise_for_status()
        return [m['name'] for m in response.json().get('models', [])]

    def _options(self, temperature: float, max_tokens: int) -> Dict[str, Any]:
        return {"temperature": temperature, "num_predict": max_tokens}

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = config.LLMConfig.GRADING_TEMPERATURE,
        max_tokens: int = config.LLMConfig.MAX_OUTPUT_TOKENS,
        json_mode: bool = False,
        stream: bool = False
    ) -> str:
        """
        Generate text from a single prompt.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            json_mode: Constrain output to a JSON object (grading calls)
            stream: Stream the response and join it

        Returns:
            Generated text

        Raises:
            RuntimeError: every attempt failed (timeouts included)
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
            "options": self._options(temperature, max_tokens),
        }
        if system_prompt:
            payload["system"] = system_prompt
        if json_mode:
            payload["format"] = "json"

        return self._call("/api/generate", payload, stream, lambda data: data.get('response', ''))

    def chat(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
        temperature: float = config.LLMConfig.TUTOR_TEMPERATURE,
        max_tokens: int = config.LLMConfig.MAX_OUTPUT_TOKENS,
        stream: bool = False
    ) -> str:
        """
        Multi-turn completion.

        Args:
            messages: [{'role': 'user' | 'ai' | 'assistant', 'content': ...}]
                in order; 'ai' is sent as 'assistant'
            system_prompt: Prepended as the system message

        Raises:
            RuntimeError: every attempt failed
        """
        turns = []
        if system_prompt:
            turns.append({"role": "system", "content": system_prompt})
        for message in messages:
            role = message.get('role', 'user')
            turns.append({
                "role": "assistant" if role in ('ai', 'assistant') else role,
                "content": message.get('content', ''),
            })

        payload = {
            "model": self.model,
            "messages": turns,
            "stream": stream,
            "options": self._options(temperature, max_tokens),
        }
        return self._call(
            "/api/chat", payload, stream,
            lambda data: (data.get('message') or {}).get('content', '')
        )

    def _call(self, endpoint: str, payload: Dict[str, Any], stream: bool, extract) -> str:
        """POST with retries; `extract` pulls the text out of one response object."""
        last_error = None

        for attempt in range(self.max_retries):
            try:
                if stream:
                    return self._post_stream(endpoint, payload, extract)
                return extract(self._post(endpoint, payload))

            except requests.RequestException as e:
                last_error = e
                logger.warning(
                    f"⚠️ {endpoint} failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_delay)

        raise RuntimeError(f"Failed after {self.max_retries} attempts: {last_error}")

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = requests.post(f"{self.base_url}{endpoint}", json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _post_stream(self, endpoint: str, payload: Dict[str, Any], extract) -> str:
        """Streaming call; newline-delimited JSON objects joined into one string."""
        response = requests.post(
            f"{self.base_url}{endpoint}",
            json=payload,
            timeout=self.timeout,
            stream=True
        )
        response.raise_for_status()

        parts = []
        for line in response.iter_lines():
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            parts.append(extract(data))
            if data.get('done', False):
                break

        return ''.join(parts)

    def is_available(self) -> bool:
        """Check if the Ollama server answers."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except requests.RequestException:
            return False
