"""
chunkscribe.transcribe - Whisper inference engines.

Two interchangeable engines share the InferenceEngine interface: the
whisper.cpp command-line binary invoked per chunk (cpp), and an in-process
faster-whisper model (faster).
"""

from __future__ import annotations
