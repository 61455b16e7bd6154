"""
Core modules for storytime_ai.

This package contains the chat services, the AI manager, usage accounting,
pricing, jobs and moderation.
"""
