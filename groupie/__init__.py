"""Groupie Tracker backend: concert data aggregation with Spotify enrichment."""
