"""Router package exports."""
from . import affiliates, conversions, merchants, referrals, tracking

__all__ = [
	"affiliates",
	"conversions",
	"merchants",
	"referrals",
	"tracking",
]
