"""Public schema exports."""

from .auth import OAuthCallbackPayload, RegisterRequest, SessionResponse, SignInRequest
from .profile import FavoriteRequest, ProfileResponse
from .ratings import RatingSubmissionRequest, ReviewRequest, UserRatingResponse

__all__ = [
    "FavoriteRequest",
    "OAuthCallbackPayload",
    "ProfileResponse",
    "RatingSubmissionRequest",
    "RegisterRequest",
    "ReviewRequest",
    "SessionResponse",
    "SignInRequest",
    "UserRatingResponse",
]
