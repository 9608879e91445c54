"""CLI module for wahook."""
