"""
Matrix - Voice Interaction Engine
==================================

Turns a stream of speech-recognition text into wake-gated commands,
sends them to the Matrix reasoning service and speaks the replies.

LEARNING POINT: __init__.py
---------------------------
- This file makes the 'matrixvoice/' directory a Python package.
- You can import from it like: `from matrixvoice import __version__`
- Keep it light: importing the package should not start audio or
  network clients.
"""

__version__ = "0.1.0"
__author__ = "Jazziki17"
