"""
Local CLIP image embedding service.

- Loads the CLIP model once per process (singleton)
- Supports CUDA and Apple MPS; falls back to CPU
- Encodes image bytes into unit-length embedding vectors
"""

from __future__ import annotations

import io
import asyncio
import threading
import logging
from typing import List, Optional

import aiohttp
import torch
from PIL import Image
import clip

from .config import EmbeddingSettings
from .models import Image as ScanImage
from .network import EmbeddingProvider, fetch_image


_singleton_lock = threading.Lock()
_singleton_instance: Optional["CLIPService"] = None


class CLIPService:
    def __init__(self, settings: Optional[EmbeddingSettings] = None):
        self.settings = settings or EmbeddingSettings()
        self.device = self._select_device()
        self.model_name = self.settings.model or 'ViT-B/32'
        self.model, self.preprocess = clip.load(self.model_name, device=self.device)

        # Use fast dtypes where safe
        self.use_fp16 = self.device.type == 'cuda'
        if self.use_fp16:
            try:
                self.model = self.model.half()  # type: ignore[attr-defined]
                torch.backends.cuda.matmul.allow_tf32 = True  # type: ignore[attr-defined]
            except Exception:
                self.use_fp16 = False

        # Inference is not re-entrant on one model instance
        self._lock = threading.Lock()

        logging.getLogger(__name__).info(
            f"CLIPService initialized: model={self.model_name}, device={self.device.type}, fp16={self.use_fp16}"
        )

    def _select_device(self) -> torch.device:
        prefer = self.settings.device_preference or []
        if "cuda" in prefer and torch.cuda.is_available():
            return torch.device("cuda")
        if "mps" in prefer and getattr(torch.backends, 'mps', None) and torch.backends.mps.is_available():
            return torch.device("mps")
        return torch.device("cpu")

    def embed_image(self, image_bytes: bytes) -> Optional[List[float]]:
        """
        Encode one image.

        Returns:
            Unit-length vector, or None if the bytes are not a readable image
        """
        try:
            img = Image.open(io.BytesIO(image_bytes)).convert('RGB')
        except Exception as e:
            logging.getLogger(__name__).warning(f"Cannot decode image for embedding: {str(e)}")
            return None

        image_input = self.preprocess(img).unsqueeze(0).to(self.device)
        if self.use_fp16:
            image_input = image_input.half()

        with self._lock, torch.no_grad():
            features = self.model.encode_image(image_input)
            features = features / features.norm(dim=-1, keepdim=True)
        return features[0].float().cpu().tolist()


def get_clip_service(settings: Optional[EmbeddingSettings] = None) -> CLIPService:
    global _singleton_instance
    if _singleton_instance is not None:
        return _singleton_instance
    with _singleton_lock:
        if _singleton_instance is None:
            _singleton_instance = CLIPService(settings)
        return _singleton_instance


class ClipEmbeddingProvider(EmbeddingProvider):
    """Embeds images with the local CLIP model off the event loop."""

    name = 'clip'

    def __init__(self, settings: Optional[EmbeddingSettings] = None):
        self.settings = settings or EmbeddingSettings()

    async def embed(self, session: aiohttp.ClientSession, image: ScanImage) -> Optional[List[float]]:
        data = await fetch_image(session, image.url)
        if not data:
            return None
        service = await asyncio.to_thread(get_clip_service, self.settings)
        return await asyncio.to_thread(service.embed_image, data)
