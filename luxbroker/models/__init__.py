from luxbroker.models.broker import Broker
from luxbroker.models.commission import Commission
from luxbroker.models.notification import BrokerNotification
from luxbroker.models.profile import UserProfile
from luxbroker.models.referral_click import ReferralClick
from luxbroker.models.seller import Seller

__all__ = [
    "Broker",
    "BrokerNotification",
    "Commission",
    "ReferralClick",
    "Seller",
    "UserProfile",
]
