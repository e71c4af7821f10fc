from __future__ import annotations

import json
import logging
import os
import socket
import time
import urllib.error
import urllib.request
from typing import Any

from domain.errors import ForecastError

logger = logging.getLogger(__name__)


class GeminiClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY", "")
        self.model = model or os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.base_url = (base_url or os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")).rstrip("/")
        self.timeout_seconds = timeout_seconds or float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60"))

    def build_payload(self, prompt: str, response_schema: dict[str, Any]) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            },
        }

    def generate_content(self, prompt: str, response_schema: dict[str, Any]) -> dict[str, Any]:
        started = time.perf_counter()
        req = urllib.request.Request(
            url=f"{self.base_url}/models/{self.model}:generateContent?key={self.api_key}",
            data=json.dumps(self.build_payload(prompt, response_schema)).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            logger.info(
                "GeminiClient request start model=%s prompt_chars=%d timeout=%.1fs",
                self.model,
                len(prompt),
                self.timeout_seconds,
            )
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                body = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            elapsed = time.perf_counter() - started
            logger.warning("GeminiClient request rejected after %.2fs status=%s", elapsed, exc.code)
            raise ForecastError(f"Forecast provider returned HTTP {exc.code}.") from exc
        except (socket.timeout, urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
            elapsed = time.perf_counter() - started
            logger.warning("GeminiClient request failed after %.2fs: %s", elapsed, exc)
            raise ForecastError(f"Forecast provider request failed: {exc}") from exc

        elapsed = time.perf_counter() - started
        logger.info("GeminiClient request complete in %.2fs", elapsed)
        if not isinstance(body, dict):
            raise ForecastError("Forecast provider returned an unexpected response.")
        return body
