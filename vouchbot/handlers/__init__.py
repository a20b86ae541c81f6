"""
Telegram update handlers.
"""
