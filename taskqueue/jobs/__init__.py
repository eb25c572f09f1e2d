"""
Background job pipeline for task side effects.

This package provides:
- A relational job store with exclusive claims and visibility delays
- Typed payloads per job type and registry-based handlers
- An asyncio worker pool with a global rate limit and retry backoff
- The enqueue gateway pairing task writes with job creation
"""
