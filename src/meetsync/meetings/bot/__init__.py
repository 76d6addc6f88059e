"""MeetingBaas vendor integration -- API client and input validation.

Provides MeetingBaasClient for the bot and calendar REST endpoints, with
tenacity-driven retry, Retry-After handling for 429s, and validation of
ids, meeting URLs, and timestamps before any request is sent.
"""
