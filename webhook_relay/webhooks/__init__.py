"""Webhook inbound system.

Receives Shopify webhooks; each one is signature-verified, deduplicated,
rate-limited per shop and queued for asynchronous forwarding.
"""
