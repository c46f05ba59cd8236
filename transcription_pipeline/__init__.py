"""
Core package for the meeting transcription pipeline.

This package contains the modular components used by the Cloud Functions
entrypoints in :mod:`transcription_pipeline.main` to normalise an uploaded
recording, split it into overlapping windows, run speech recognition on each
window, stitch the results into one transcript and keep the job document up
to date along the way.
"""
