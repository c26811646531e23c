"""Concurrent fetch/scrape orchestration core for an anime metadata aggregator."""
