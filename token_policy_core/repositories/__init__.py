from .user_token_repository import UserTokenRepository

__all__ = ["UserTokenRepository"]
