"""GitHub webhook ingestion: signature checks, gate, event pipeline and HTTP server."""
