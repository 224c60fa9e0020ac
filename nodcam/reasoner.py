"""
Vision-language reasoners: Google Gemini and a local Ollama server.

Both return the model's free text, or None on any failure.
"""
import asyncio
import base64
import logging
from typing import Dict, List, Optional

import aiohttp
import google.generativeai as genai

from .config import ReasonerConfig

logger = logging.getLogger(__name__)


class GeminiReasoner:
    """Gemini multimodal model via google-generativeai."""

    def __init__(self, model: str = "gemini-2.5-flash", api_key: Optional[str] = None):
        if not api_key:
            raise ValueError("GOOGLE_API_KEY not found in environment variables")
        genai.configure(api_key=api_key)
        self.model_name = model
        self._models: Dict[str, genai.GenerativeModel] = {}

    def _model_for(self, system_prompt: str) -> genai.GenerativeModel:
        if system_prompt not in self._models:
            self._models[system_prompt] = genai.GenerativeModel(
                self.model_name, system_instruction=system_prompt or None
            )
        return self._models[system_prompt]

    async def ask(self, system_prompt: str, user_prompt: str,
                  image: Optional[bytes] = None) -> Optional[str]:
        contents: List[dict] = [{"text": user_prompt}]
        if image:
            contents.append({"inline_data": {"mime_type": "image/jpeg", "data": image}})

        try:
            response = await self._model_for(system_prompt).generate_content_async(contents)
            text = response.text
        except Exception as e:
            logger.error(f"❌ Gemini request failed: {e}")
            return None

        logger.info(f"🤖 Gemini: {text.strip()[:120]}")
        return text


class OllamaReasoner:
    """Local Ollama server, /api/chat with an attached image."""

    def __init__(self, model: str, base_url: str = "http://localhost:11434",
                 timeout_s: float = 60.0):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    async def ask(self, system_prompt: str, user_prompt: str,
                  image: Optional[bytes] = None) -> Optional[str]:
        user_message: dict = {"role": "user", "content": user_prompt}
        if image:
            user_message["images"] = [base64.b64encode(image).decode("ascii")]
        payload = {
            "model": self.model,
            "stream": False,
            "messages": [
                {"role": "system", "content": system_prompt},
                user_message,
            ],
        }

        async with aiohttp.ClientSession() as session:
            try:
                async with session.post(
                    f"{self.base_url}/api/chat",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_s)
                ) as response:
                    if response.status != 200:
                        logger.error(f"❌ Ollama returned HTTP {response.status}")
                        return None
                    data = await response.json()
            except asyncio.TimeoutError:
                logger.error(f"❌ Ollama timed out ({self.timeout_s:.0f} seconds)")
                return None
            except (aiohttp.ClientError, ValueError) as e:
                logger.error(f"❌ Ollama request failed: {e}")
                return None

        message = data.get("message") if isinstance(data, dict) else None
        text = message.get("content") if isinstance(message, dict) else None
        if not isinstance(text, str):
            logger.error(f"❌ Ollama reply had no message: {data}")
            return None
        logger.info(f"🤖 Ollama: {text.strip()[:120]}")
        return text


def create_reasoner(cfg: ReasonerConfig):
    """Build the reasoner named by ``cfg.provider``."""
    if cfg.provider == "gemini":
        return GeminiReasoner(model=cfg.model, api_key=cfg.api_key)
    if cfg.provider == "ollama":
        return OllamaReasoner(model=cfg.model, base_url=cfg.ollama_url)
    raise ValueError(f"Unknown reasoner provider: {cfg.provider}")
