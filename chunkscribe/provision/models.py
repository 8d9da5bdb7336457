"""
chunkscribe.provision.models - Logical model ids and ggml file names.
"""

from __future__ import annotations

MODEL_BASE_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"

DEFAULT_MODEL_FILE = "ggml-base.en.bin"

MODEL_FILES: dict[str, str] = {
    "tiny.en": "ggml-tiny.en.bin",
    "base.en": "ggml-base.en.bin",
    "small.en": "ggml-small.en.bin",
    "medium.en": "ggml-medium.en.bin",
    "tiny": "ggml-tiny.bin",
    "base": "ggml-base.bin",
    "small": "ggml-small.bin",
    "medium": "ggml-medium.bin",
}


def model_filename(model_id: str) -> str:
    """Map a logical model id to its ggml file name; unknown ids get the default."""
    return MODEL_FILES.get(model_id, DEFAULT_MODEL_FILE)


def model_url(filename: str, base_url: str = MODEL_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/{filename}"
