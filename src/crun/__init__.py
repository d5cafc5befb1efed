"""Command-line front end for code_runner."""
