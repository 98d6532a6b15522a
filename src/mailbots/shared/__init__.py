"""
Shared configuration and logging used across the bot.
"""
