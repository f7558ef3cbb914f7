"""Pipeline orchestration."""

from replybot.pipeline.orchestrator import Pipeline

__all__ = ["Pipeline"]
