"""Crawl scheduling and reconciliation core for the cafe directory."""
