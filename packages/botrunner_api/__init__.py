"""
BotRunner API - FastAPI control surface for the bot runner
"""
__version__ = "0.1.0"
