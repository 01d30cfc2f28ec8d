"""Async Request Gateway.

Azure Functions workflow that fronts slow or rate-limited upstream
operations with a uniform submit/poll HTTP contract: a stateless ingest
endpoint records each request in a durable store, a queue-backed worker
performs the real work, and a client-side poller re-polls until the
request reaches a terminal state.
"""

__version__ = "0.1.0"
