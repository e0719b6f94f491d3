import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from ecoforecast.core.config import ModelConfig
from ecoforecast.core.errors import ModelHttpError, ModelParseError, ModelTimeout

# Set up logging
logger = logging.getLogger(__name__)


def clean_indents(text: str) -> str:
    """Remove common indentation from a multi-line string."""
    lines = text.split('\n')
    if not lines:
        return text

    # Find minimum indentation of non-empty lines
    min_indent = float('inf')
    for line in lines:
        if line.strip():
            indent = len(line) - len(line.lstrip())
            min_indent = min(min_indent, indent)

    if min_indent == float('inf'):
        return text

    cleaned_lines = []
    for line in lines:
        if len(line) >= min_indent:
            cleaned_lines.append(line[min_indent:])
        else:
            cleaned_lines.append(line)

    return '\n'.join(cleaned_lines).strip()


def _strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _balanced_objects(text: str):
    """Yield every balanced ``{...}`` span in ``text``, left to right.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = None
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = idx + 1
                    break
        if end is None:
            return
        yield text[start:end]
        start = text.find("{", start + 1)


def extract_json_from_response(response_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort JSON object extraction from LLM responses.

    Handles:
    - Plain JSON
    - Markdown code fences (```json, ```)
    - Extra commentary before/after the JSON object

    Args:
        response_text: Raw LLM response

    Returns:
        Parsed JSON object, or None when no object can be recovered.
        A JSON value that is not an object also yields None.
    """
    if not response_text or not response_text.strip():
        return None

    for candidate in (response_text.strip(), _strip_code_fences(response_text)):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return parsed if isinstance(parsed, dict) else None

    logger.warning("Direct JSON parse failed, attempting balanced-brace extraction")
    logger.debug(f"Raw response (first 500 chars): {response_text[:500]}")
    for span in _balanced_objects(response_text):
        try:
            parsed = json.loads(span)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    logger.error(f"JSON extraction failed completely: {response_text[:300]}")
    return None


def sanitize_header(value: str) -> str:
    """Replace unicode characters with ASCII equivalents for HTTP headers."""
    replacements = {
        '\u2013': '-',  # en dash
        '\u2014': '-',  # em dash
        '\u2018': "'",  # left single quote
        '\u2019': "'",  # right single quote
        '\u201C': '"',  # left double quote
        '\u201D': '"',  # right double quote
    }
    for unicode_char, ascii_char in replacements.items():
        value = value.replace(unicode_char, ascii_char)
    # Remove any remaining non-ASCII characters
    return value.encode('ascii', 'ignore').decode('ascii')


class OpenRouterClient:
    """Chat-completion client returning parsed JSON objects.

    ``call`` returns ``None`` when the model answered but produced no usable
    JSON. HTTP failures raise ``ModelHttpError``, an exceeded wait raises
    ``ModelTimeout`` and an undecodable response envelope raises
    ``ModelParseError``.
    """

    def __init__(
        self,
        config: ModelConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not config.api_key:
            raise ValueError("OPENROUTER_API_KEY not set for OpenRouterClient")
        self.config = config
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        # HTTP headers must be latin-1 encodable
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": sanitize_header(self.config.site_url),
            "X-Title": sanitize_header(self.config.site_name),
        }

    def _payload(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self.transport) as client:
            return await client.post(self.config.base_url, headers=self._headers(), json=payload)

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float = 0.2,
    ) -> Optional[Dict[str, Any]]:
        payload = self._payload(system_prompt, user_prompt, max_tokens, temperature)
        timeout = self.config.timeout_seconds
        logger.info(f"Calling OpenRouter with model: {self.config.model} (max_tokens={max_tokens})")

        try:
            response = await asyncio.wait_for(self._post(payload), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning(f"OpenRouter call timed out after {timeout:.1f}s")
            raise ModelTimeout(timeout) from exc
        except httpx.HTTPError as exc:
            logger.error(f"OpenRouter transport error: {exc}")
            raise ModelHttpError(status=0, body=str(exc)) from exc

        if response.status_code < 200 or response.status_code >= 300:
            body = response.text
            logger.error(f"OpenRouter API error {response.status_code}: {body[:500]}")
            raise ModelHttpError(status=response.status_code, body=body)

        try:
            result = response.json()
        except ValueError as exc:
            logger.error(f"OpenRouter returned a non-JSON envelope: {response.text[:300]}")
            raise ModelParseError("OpenRouter returned a non-JSON envelope") from exc

        usage = result.get("usage") if isinstance(result, dict) else None
        if isinstance(usage, dict):
            prompt_tokens = usage.get("prompt_tokens", 0)
            completion_tokens = usage.get("completion_tokens", 0)
            logger.info(
                f"OpenRouter usage for {self.config.model}: prompt={prompt_tokens}, "
                f"completion={completion_tokens}"
            )

        content = ""
        choices = result.get("choices") if isinstance(result, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            raw_content = message.get("content") if isinstance(message, dict) else None
            if isinstance(raw_content, str):
                content = raw_content.strip()
            elif raw_content is not None:
                logger.error(f"OpenRouter content is {type(raw_content).__name__}, expected text")
        if not content:
            logger.error(f"Empty response from OpenRouter model {self.config.model}")
            return None

        logger.info(f"OpenRouter response received ({len(content)} chars)")
        return extract_json_from_response(content)
