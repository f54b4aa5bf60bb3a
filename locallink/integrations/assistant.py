"""
Conversational assistant ("LocalLink Sahayak") and voice transcription clients.

Both talk to the Gemini REST API over aiohttp. The marketplace only consumes
the finalized JSON summary the assistant emits once the customer confirms.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

from locallink.core.config import AssistantConfig
from locallink.core.exceptions import AssistantUnavailable
from locallink.domain.value_objects import CATEGORIES, normalize_category

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = f"""
You are "LocalLink Sahayak", a friendly and efficient Indian shopkeeper assisting a customer in a local marketplace.

STRICT CONVERSATION RULES:
1. ASK ONLY ONE QUESTION AT A TIME. Never ask multiple things in one message.
2. SHORT CONVERSATION: Aim to gather all necessary details (Brand, Size, Quantity, Type) in 2 to 4 questions maximum.
3. BE CONCISE: Use a mix of Hindi and English (Hinglish).
4. IMAGES: User images are tagged like [REF_IMG_0], [REF_IMG_1]. Use them to identify the item instead of asking basic questions if the image is clear.

WORKFLOW:
- Step 1: Identify the item from the user's first input/image.
- Step 2: Ask for one missing specific (e.g., "Quantity kitni chahiye?" or "Brand preference kya hai?").
- Step 3: Once you have the main details, proceed to the Final Step.

CATEGORIZATION:
You must categorize the request into one of these EXACT categories:
{', '.join(CATEGORIES)}.
Use "Other" ONLY if the request is unclear or doesn't fit any other category.

FINAL STEP:
When you have enough info, summarize using this EXACT format:
"Theek hai! Aapki request ye rahi:

Need: [Item Name]
Quantity: [Amount]
Brand: [Brand Name or 'Any']
Type: [Specific Type or 'General']

Kya main ye details local shops ko bhej doon? (Yes/No)"

- If they say "Yes", output ONLY this JSON: {{"finalized": true, "summary": "Full formatted description", "category": "ONE_OF_THE_CATEGORIES_ABOVE", "selectedImageId": "REF_IMG_X"}}.

SAFETY & CONTEXT:
- Do not block or filter messages about common household or marketplace items.
- Always assume a helpful, commercial marketplace context.
"""

TRANSCRIBE_PROMPT = (
    "Listen to this audio and transcribe it accurately in the language spoken "
    "(Hindi, English, or Hinglish). Return ONLY the transcribed text. "
    "If you hear multiple items, capture them all."
)

GREETING = "Namaste! Main aapki kaise madad kar sakta hoon?"
BUSY_REPLY = "Namaste! Main thoda busy hoon, please ek baar phir try karein."
MISSING_KEY_REPLY = "API_KEY configuration missing on server."
SLOW_STREAM_SUFFIX = "\n(Sahayak is currently slow. Please try again.)"

GENERATION_CONFIG = {"temperature": 0.7, "topP": 0.9, "topK": 40}
SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_NONE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class AgentSummary:
    finalized: bool
    summary: str
    category: str
    selected_image_id: str | None = None


def _clean_parts(parts: Iterable[Any]) -> list[dict[str, Any]]:
    cleaned = []
    for part in parts or ():
        if not isinstance(part, Mapping):
            continue
        if part.get("text"):
            cleaned.append({"text": part["text"]})
        elif part.get("inlineData"):
            cleaned.append({"inlineData": part["inlineData"]})
    return cleaned


def sequence_history(messages: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Turn a chat transcript into strictly alternating user/model turns.

    Consecutive turns of the same role are merged, turns without usable parts
    are dropped, and the conversation always starts with a user turn.
    """
    sequenced: list[dict[str, Any]] = []
    for message in messages or ():
        role = "model" if message.get("role") == "model" else "user"
        parts = _clean_parts(message.get("parts", ()))
        if not parts:
            continue
        if not sequenced:
            if role == "user":
                sequenced.append({"role": role, "parts": parts})
        elif sequenced[-1]["role"] == role:
            sequenced[-1]["parts"].extend(parts)
        else:
            sequenced.append({"role": role, "parts": parts})
    return sequenced


def parse_agent_summary(text: str) -> AgentSummary | None:
    """Extract the finalized request from the assistant's full reply, if present."""
    match = _JSON_BLOCK.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None
    return AgentSummary(
        finalized=bool(parsed.get("finalized")),
        summary=str(parsed.get("summary") or ""),
        category=normalize_category(parsed.get("category")),
        selected_image_id=parsed.get("selectedImageId") or None,
    )


def _chunk_text(payload: Mapping[str, Any]) -> str:
    texts = []
    for candidate in payload.get("candidates") or ():
        for part in (candidate.get("content") or {}).get("parts") or ():
            if part.get("text"):
                texts.append(part["text"])
    return "".join(texts)


class _GeminiClient:
    def __init__(self, config: AssistantConfig, session: aiohttp.ClientSession | None = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )
            self._owns_session = True
        return self._session

    def _url(self, method: str) -> str:
        return f"{self.config.base_url}/models/{self.config.model}:{method}"

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


class AssistantClient(_GeminiClient):
    """Streams the assistant's reply to a customer conversation."""

    async def stream_reply(self, history: Iterable[Mapping[str, Any]]) -> AsyncIterator[str]:
        if not self.config.enabled:
            yield MISSING_KEY_REPLY
            return

        contents = sequence_history(history)
        if not contents:
            yield GREETING
            return

        body = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "generationConfig": GENERATION_CONFIG,
            "safetySettings": SAFETY_SETTINGS,
        }
        session = await self._get_session()
        try:
            response = await session.post(
                self._url("streamGenerateContent"),
                params={"alt": "sse", "key": self.config.api_key},
                json=body,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AssistantUnavailable(f"Assistant request failed: {e}") from e

        async with response:
            if response.status != 200:
                detail = await response.text()
                logger.error("Assistant returned HTTP %s: %s", response.status, detail[:200])
                raise AssistantUnavailable(f"Assistant returned HTTP {response.status}")

            try:
                async for raw_line in response.content:
                    line = raw_line.decode("utf-8").strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data:
                        continue
                    text = _chunk_text(json.loads(data))
                    if text:
                        yield text
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.warning("Assistant stream broke off: %s", e)
                yield SLOW_STREAM_SUFFIX

    async def reply(self, history: Iterable[Mapping[str, Any]]) -> str:
        return "".join([chunk async for chunk in self.stream_reply(history)])


class TranscriptionClient(_GeminiClient):
    """Best-effort speech to text for voice requests."""

    async def transcribe(self, audio_base64: str, mime_type: str = "audio/webm") -> str:
        if not audio_base64 or not self.config.enabled:
            return ""

        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": audio_base64}},
                        {"text": TRANSCRIBE_PROMPT},
                    ],
                }
            ]
        }
        try:
            session = await self._get_session()
            async with session.post(
                self._url("generateContent"), params={"key": self.config.api_key}, json=body
            ) as response:
                if response.status != 200:
                    logger.warning("Transcription returned HTTP %s", response.status)
                    return ""
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Transcription failed: %s", e)
            return ""
        return _chunk_text(payload).strip()
