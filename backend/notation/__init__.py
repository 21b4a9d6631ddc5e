"""Movetext parsing, clock extraction and PGN header normalization."""
