"""Post-meeting AI output -- summary, action items, and Q&A generation."""

from src.meetsync.meetings.minutes.generator import GeneratedMinutes, MinutesGenerator

__all__ = ["GeneratedMinutes", "MinutesGenerator"]
