"""Typer sub-applications for the ecoflow CLI."""
