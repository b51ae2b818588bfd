"""
Reservation Sync - 外部预订渠道同步核心
"""
__version__ = "1.0.0"
