"""Core forwarding supervisor implementation.

This package contains the components of the forward manager:
- Rule loading and validation
- Forward workers and their relays
- The supervisor owning every worker
- Signal handling
- Exceptions and settings

The core package provides everything needed to run the forwarding service,
while keeping it separate from the command-line interface.
"""
