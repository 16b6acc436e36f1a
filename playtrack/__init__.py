"""
PlayTrack - playback telemetry engine.

Instruments video playback: a player state machine turns media and HLS
engine callbacks into playback events, which are batched, sent to the
video-stream ingestion API and kept in a durable outbox when sends fail.
"""

__version__ = "0.1.0"
