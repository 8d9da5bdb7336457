"""
chunkscribe.provision - Native engine and model provisioning.

Downloads the whisper.cpp command-line binary for the host platform and ggml
model files on first use, and tracks them in a local asset cache.
"""

from __future__ import annotations
