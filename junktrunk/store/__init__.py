"""Persistence of resolved products and scan history."""
