"""AI invocation gateway.

Gets a schema-conforming JSON summary out of an unreliable completion endpoint:
  - Request Queue (concurrency + start-rate admission, FIFO)
  - Retrying Invoker (429/5xx/network retries, Retry-After, full jitter)
  - Chat Completions transport (httpx)
  - Response Normalizer (provider response shapes → text)
  - Structured JSON recovery (fences, surrounding commentary)
"""
