"""
chunkscribe.record - Microphone capture in fixed-duration chunks.
"""

from __future__ import annotations
