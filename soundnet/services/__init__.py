"""Service layer exports."""

from .auth_flow import AuthFlow
from .profile import ProfileService
from .rating_aggregator import RatingAggregator, Subscription
from .review_store import ReviewStore
from .session_linker import SessionLinker
from .token_cipher import TokenCipherService
from .token_store import TokenStore

__all__ = [
    "AuthFlow",
    "ProfileService",
    "RatingAggregator",
    "ReviewStore",
    "SessionLinker",
    "Subscription",
    "TokenCipherService",
    "TokenStore",
]
