"""HTTP surface of the ledger (FastAPI)."""
