"""
Chat-completions client for the hosted LLM.

One request per call; no retry, streaming or caching. Replies that are
meant to be JSON go through parse_json_reply(), which strips markdown
fences and never raises.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Upstream LLM call failed or returned an unusable reply."""
    pass


@dataclass
class ChatResult:
    text: str
    tokens_used: int = 0
    model: str = ""


class ChatClient:
    """Minimal OpenAI-compatible /chat/completions client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg) -> "ChatClient":
        return cls(
            api_key=cfg.openai_api_key,
            base_url=cfg.openai_base_url,
            model=cfg.openai_model,
            timeout=cfg.llm_timeout_secs,
        )

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResult:
        """Send one system+user exchange and return the first choice."""
        if not self.api_key:
            raise LLMError("OPENAI_API_KEY is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            r = self.session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"LLM request failed: {e}")
            raise LLMError(f"LLM request failed: {e}") from e

        if not r.ok:
            logger.error(f"LLM API error {r.status_code}: {r.text[:500]}")
            raise LLMError(f"LLM API error: {r.text}")

        try:
            data = r.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed LLM response: {e}") from e
        if text is not None and not isinstance(text, str):
            raise LLMError(f"Malformed LLM response: content is {type(text).__name__}")

        usage = data.get("usage")
        try:
            tokens = int(usage.get("total_tokens") or 0) if isinstance(usage, dict) else 0
        except (TypeError, ValueError):
            tokens = 0
        model = data.get("model")
        logger.info(f"LLM reply received, tokens used: {tokens}")
        return ChatResult(
            text=text or "",
            tokens_used=tokens,
            model=model if isinstance(model, str) and model else self.model,
        )


def parse_json_reply(reply: str) -> Optional[Dict[str, Any]]:
    """Decode a JSON object from an LLM reply, or None if there isn't one."""
    reply = reply.strip()
    if reply.startswith("```"):
        reply = re.sub(r'^```(?:json)?\s*', '', reply)
        reply = re.sub(r'\s*```$', '', reply)

    try:
        result = json.loads(reply)
    except json.JSONDecodeError:
        # Try the outermost {...} span
        start, end = reply.find("{"), reply.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            result = json.loads(reply[start:end + 1])
        except json.JSONDecodeError:
            return None
    return result if isinstance(result, dict) else None
