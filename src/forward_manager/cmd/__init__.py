"""Command line interface modules.

This package provides the command-line entry point for:
- Running the forwarding supervisor in the foreground
- Checking a forwards file without binding anything
"""
