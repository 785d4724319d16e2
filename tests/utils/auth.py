from jose import jwt

from gym_retention.config import settings


def get_authentication_headers(user_id: str = "user_test", role: str = "ADMIN") -> dict[str, str]:
    """
    Generates a valid JWT and authentication headers for a test user.
    """
    payload = {"sub": user_id, "role": role, "exp": 9999999999}
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}
