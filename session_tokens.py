from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings
from schemas import UserRecord

SESSION_COOKIE = "finance_session"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="finance-session")


def issue_session_token(user: UserRecord) -> str:
    return _serializer().dumps({"u": user.id, "e": user.email})


def read_session_token(token: Optional[str]) -> Optional[UserRecord]:
    if not token:
        return None
    settings = get_settings()
    try:
        data = _serializer().loads(
            token, max_age=settings.session_max_age_hours * 3600
        )
    except BadSignature:
        return None

    if not isinstance(data, dict) or not data.get("u") or not data.get("e"):
        return None
    return UserRecord(id=data["u"], email=data["e"])
