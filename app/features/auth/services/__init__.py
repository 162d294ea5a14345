from app.features.auth.services.auth_service import AuthService

__all__ = ["AuthService"]
