"""JSON schemas shipped as nixci package data."""
