"""
Client for the text-generation oracle. Requests carry a prompt and a response
schema; the answer must be JSON matching that schema.
"""

import json
import logging
from typing import Any, Optional

from google import genai

from consentscan.config import DEFAULT_MODEL
from consentscan.errors import OracleError


def _response_text(rsp) -> Optional[str]:
    txt = getattr(rsp, "text", None)
    if not txt and getattr(rsp, "candidates", None):
        parts = rsp.candidates[0].content.parts
        if parts and hasattr(parts[0], "text"):
            txt = parts[0].text
    return txt


def parse_json_text(txt: Optional[str]) -> Any:
    if not txt or not txt.strip():
        raise OracleError("empty JSON from model")
    s = txt.strip()
    # some models still wrap JSON in a markdown fence
    if s.startswith("```"):
        s = s.strip("`")
        if s.lower().startswith("json"):
            s = s[4:]
    try:
        return json.loads(s)
    except json.JSONDecodeError as e:
        raise OracleError(f"malformed JSON from model: {e}") from e


class GeminiOracle:
    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client=None):
        if client is None and not api_key:
            raise OracleError("An API key is required for the Gemini oracle")
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def generate_json(self, prompt: str, schema: dict) -> Any:
        logging.debug(f"[AI] Requesting {self.model} ({len(prompt)} prompt chars)")
        try:
            rsp = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[{"role": "user", "parts": [{"text": prompt}]}],
                config={
                    "temperature": 0,
                    "response_mime_type": "application/json",
                    "response_schema": schema,
                },
            )
        except Exception as e:
            raise OracleError(f"Oracle request failed: {e}") from e
        return parse_json_text(_response_text(rsp))
