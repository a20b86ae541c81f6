"""
Vouch bot services.
"""
