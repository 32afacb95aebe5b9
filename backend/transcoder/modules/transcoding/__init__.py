"""Transcoding module.

Runs ffmpeg jobs in the background, publishes per-job progress to Redis and
live subscribers, supports cancellation, and uploads finished artifacts to
object storage.
"""
