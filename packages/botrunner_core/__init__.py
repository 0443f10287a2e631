"""
botrunner_core - run lifecycle and trade execution engine for trading bots
"""

__version__ = "0.1.0"
