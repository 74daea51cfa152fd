from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx


class VeoServiceUnavailable(Exception):
    """Raised when the generative model responds with 503."""


@dataclass
class GeneratedMedia:
    data: bytes
    mime_type: str


class VeoClient:
    """Image-to-video calls against the Generative Language API."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "models/veo-001-preview",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 300.0,
        logger: Optional[logging.Logger] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self.api_key)

    async def generate_clip(self, image: bytes, mime_type: str, prompt: str) -> GeneratedMedia | None:
        """Returns the first inline media part of the response, or None when the model sent none."""
        if not self.enabled():
            raise RuntimeError("generative model API key is not configured")

        url = f"{self.base_url}/{self.model}:generateContent"
        payload = {
            "contents": [
                {
                    "parts": [
                        {"inlineData": {"data": base64.b64encode(image).decode("ascii"), "mimeType": mime_type}},
                        {"text": prompt},
                    ]
                }
            ],
        }
        headers = {"x-goog-api-key": self.api_key}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, headers=headers, json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code if exc.response is not None else None
                body = exc.response.text if exc.response is not None else ""
                self.log.error(
                    "veo HTTP error",
                    extra={
                        "status": status,
                        "body": body[:2000],
                        "prompt_excerpt": prompt[:500],
                        "model": self.model,
                    },
                )
                if status == 503:
                    raise VeoServiceUnavailable("video model service unavailable") from exc
                raise RuntimeError(f"Veo HTTP {status}: {body}") from exc
            except httpx.HTTPError as exc:
                self.log.error(
                    "veo request failed",
                    extra={"error": str(exc), "model": self.model},
                )
                raise
            body = response.json()

        media = self._extract_media(body)
        if media is None:
            self.log.warning("veo response missing inline media", extra={"model": self.model})
            return None
        self.log.info(
            "veo clip generated",
            extra={"model": self.model, "mime_type": media.mime_type, "content_length": len(media.data)},
        )
        return media

    def _extract_media(self, payload: dict[str, Any]) -> GeneratedMedia | None:
        candidates = payload.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inlineData") or {}
            data = inline.get("data")
            if not data:
                continue
            try:
                decoded = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError):
                self.log.warning("veo inline media is not valid base64", extra={"model": self.model})
                continue
            return GeneratedMedia(data=decoded, mime_type=inline.get("mimeType") or "video/mp4")
        return None
