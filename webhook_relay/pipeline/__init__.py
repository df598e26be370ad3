"""Forwarding pipeline: queue, circuit breaker, forwarder, metrics, monitor."""
