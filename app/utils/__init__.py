"""
Shared helpers: Bikram Sambat dates, Nepali number formatting, table timers.
"""
