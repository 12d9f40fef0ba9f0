"""Command-line interface for cardledger."""
