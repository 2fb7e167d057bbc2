"""
serverwrap: runs a console server (such as a game server) as a child process,
relays its output, forwards commands to it and stops it cleanly.
"""

__version__ = "0.1.0"
