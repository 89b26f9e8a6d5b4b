"""Utility modules for Memoria.

- **errors** -- Domain exception hierarchy rooted at MemoriaError; each
  subsystem raises its own subclass so the job queue can tell retryable
  failures from terminal ones.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **concurrency** -- asyncio semaphore throttling used for batched
  embedding calls.
"""
