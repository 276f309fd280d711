"""
Job submission and tracking.

This package provides:
- Edge normalization of server job payloads
- A polling engine with capped backoff and error bail-out
- Push channel transports (in-process hub, server-sent events)
- A progress tracker racing push events against status checks
"""
