"""
AI inference collaborator.

Thin wrapper over litellm that sends a prompt (optionally with images) and
returns the first JSON object found in the reply. Provider selection and
request framing live here so the healing engine and the analysis phase only
ever see structured dictionaries.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import litellm

from ..core.config import settings

logger = logging.getLogger(__name__)


class AIClientError(Exception):
    """The AI provider failed or its reply held no usable JSON."""


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Extract the first complete JSON object from model output.

    Handles fenced code blocks, leading prose and nested braces; braces
    inside string literals are ignored.

    Returns:
        Parsed dict if found, None otherwise
    """
    if not isinstance(text, str):
        return None

    start = text.find('{')
    while start != -1:
        depth = 0
        in_string = False
        escape_next = False

        for i in range(start, len(text)):
            char = text[i]

            if escape_next:
                escape_next = False
                continue
            if char == '\\':
                escape_next = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue

            if char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    try:
                        parsed = json.loads(text[start:i + 1])
                    except json.JSONDecodeError as e:
                        logger.debug(f"Discarding unparseable JSON candidate: {e}")
                        break
                    if isinstance(parsed, dict):
                        return parsed
                    break

        start = text.find('{', start + 1)

    return None


class AIClient:
    """Structured-JSON completions through litellm."""

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[int] = None, enabled: Optional[bool] = None):
        self.model = model or settings.model_name
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.timeout = timeout or settings.AI_TIMEOUT
        self.enabled = settings.AI_ENABLED if enabled is None else enabled

    def _build_messages(self, prompt: str, images: Optional[List[bytes]],
                        system: Optional[str]) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})

        if not images:
            messages.append({"role": "user", "content": prompt})
            return messages

        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            encoded = base64.b64encode(image).decode("ascii")
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{encoded}"},
            })
        messages.append({"role": "user", "content": content})
        return messages

    async def complete(self, prompt: str, images: Optional[List[bytes]] = None,
                       system: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a prompt and return the JSON object in the reply.

        Raises:
            AIClientError: If AI is disabled, the provider call fails, or the
                reply contains no JSON object
        """
        if not self.enabled:
            raise AIClientError("AI inference is disabled")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": self._build_messages(prompt, images, system),
            "timeout": self.timeout,
            "temperature": 0,
        }
        if self.api_key and self.model.startswith("gemini/"):
            kwargs["api_key"] = self.api_key

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise AIClientError(f"{self.model} completion failed: {e}") from e

        text = response.choices[0].message.content or ""
        parsed = extract_json_object(text)
        if parsed is None:
            logger.debug(f"No JSON object in AI reply: {text[:200]}")
            raise AIClientError("AI reply did not contain a JSON object")
        return parsed


_ai_client: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    """Get or create the process-wide AI client."""
    global _ai_client

    if _ai_client is None:
        _ai_client = AIClient()
    return _ai_client
