"""
OpenAI-backed captioner.

One ``OpenAICaptioner`` is built per request because the API key is supplied
by the caller, not by the server configuration.
"""
import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from openai import AsyncOpenAI
from PIL import Image

from caption_service.captions.prompts import SYSTEM_PROMPT, build_caption_prompt
from caption_service.settings import settings

log = logging.getLogger(__name__)

MEDIA_TYPES = {
    "jpeg": "image/jpeg",
    "mpo": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
}


@dataclass
class ImageDetails:
    width: int
    height: int
    format: str


def read_image_details(image_path: Path) -> ImageDetails:
    """Dimensions and lower-case format name, e.g. ``jpeg``."""
    with Image.open(image_path) as img:
        width, height = img.size
        return ImageDetails(width=width, height=height, format=(img.format or "unknown").lower())


def encode_image_to_base64(image_path: Path) -> str:
    """Convert image file to base64 string"""
    return base64.b64encode(Path(image_path).read_bytes()).decode("utf-8")


class OpenAICaptioner:
    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        send_image: Optional[bool] = None,
    ):
        kwargs = {"api_key": api_key}
        if settings.openai_timeout:
            kwargs["timeout"] = settings.openai_timeout
        self.client = AsyncOpenAI(**kwargs)
        self.model = model or settings.openai_model
        self.temperature = settings.openai_temperature if temperature is None else temperature
        self.send_image = settings.openai_send_image if send_image is None else send_image

    def build_messages(self, image_path: Path, details: ImageDetails) -> list:
        prompt = build_caption_prompt(details.width, details.height, details.format)
        if not self.send_image:
            user_content = prompt
        else:
            media_type = MEDIA_TYPES.get(details.format, "image/jpeg")
            user_content = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{media_type};base64,{encode_image_to_base64(image_path)}"},
                },
            ]
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]

    async def caption(self, image_path: Path, max_tokens: int) -> str:
        """Returns the trimmed first completion for one image."""
        details = read_image_details(image_path)
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=self.build_messages(image_path, details),
            max_tokens=max_tokens,
            temperature=self.temperature,
        )
        content = response.choices[0].message.content or ""
        log.debug(f"Captioned {image_path.name} ({details.width}x{details.height} {details.format})")
        return content.strip()

    async def close(self):
        await self.client.close()


def openai_captioner_factory(api_key: str) -> OpenAICaptioner:
    return OpenAICaptioner(api_key=api_key)
