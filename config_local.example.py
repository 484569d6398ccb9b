# config_local.example.py

"""
Example local overrides.

Usage:
  1) Copy this file to `config_local.py`
  2) Adjust values for your machine
  3) Never commit `config_local.py` (it is gitignored)

Prefer `.env` for secrets. This file should contain only safe overrides.
"""

# Example: post alerts to Matrix as well as the terminal
# MATRIX_ENABLED = True

# Example: run headless (watchdog and realtime only, no REPL)
# CONSOLE_ENABLED = False
