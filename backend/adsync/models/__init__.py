from adsync.models.ads import AdAccount, Campaign, AdSet, Ad, DailyInsight
from adsync.models.system import SystemToken, RateLimitRecord, ApiLog

__all__ = [
    "AdAccount",
    "Campaign",
    "AdSet",
    "Ad",
    "DailyInsight",
    "SystemToken",
    "RateLimitRecord",
    "ApiLog",
]
