"""
Chunkscribe - live dictation into text documents.

Captures microphone audio as back-to-back fixed-duration chunks, transcribes
each chunk with a local Whisper engine (whisper.cpp subprocess or in-process
faster-whisper), and inserts the results into a document in capture order.
"""

__version__ = "0.1.0"
