"""
OSDesk - Schemas
"""
from osdesk.schemas.common import MessageResponse
from osdesk.schemas.auth import (
    LoginRequest, RefreshRequest, RegisterRequest, UserResponse, TokenResponse
)
from osdesk.schemas.media import MediaFile, MediaFailure
