"""Recorder, run sandbox and tape primitives."""
