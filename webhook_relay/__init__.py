"""Reliable forwarding of Shopify webhooks to the Core AI Service.

Inbound webhooks are signature-verified, deduplicated, rate-limited per shop
and queued in-process. A background forwarder drains the queue through a
circuit breaker with exponential-backoff retries and a dead letter queue.
"""

__version__ = "0.4.0"
