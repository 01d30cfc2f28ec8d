"""Protocol services: ingest endpoint, worker and the runtime that wires them."""
