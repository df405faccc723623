"""CLI module for btcfetch."""
