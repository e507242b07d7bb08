"""
Service layer for conversion.

Helpers for talking to ffmpeg/ffprobe and turning their output into job
state, independent of the HTTP views. Used by:
- The worker pool pipelines (conversion/pipeline.py)
- The CLI management command (management/commands/convert.py)
"""
