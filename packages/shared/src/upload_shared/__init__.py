"""Shared infrastructure for the Upload Platform.

Provides the Temporal client connection factory, task queue constants,
and the Pydantic boundary models used by the submission engine and its
workers.
"""
