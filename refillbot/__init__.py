"""
SOL balance triggered token refill bot.
"""

__version__ = "0.1.0"
