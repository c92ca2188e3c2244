"""Extraction job pipeline: job store, durable queue, consumer and side channels."""
