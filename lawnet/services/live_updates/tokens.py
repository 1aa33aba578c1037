"""Signed stream tokens so the SSE endpoint does not have to trust a bare ?email= parameter."""
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from lawnet.core.config import settings
from lawnet.core.errors import AuthorizationError
from lawnet.services.grants.service import normalize_subject

_SALT = "lawnet-access-stream"


def _serializer() -> URLSafeTimedSerializer | None:
    if not settings.stream_token_secret:
        return None
    return URLSafeTimedSerializer(settings.stream_token_secret, salt=_SALT)


def issue_stream_token(subject: str) -> str | None:
    """Token for the intake response. None when no secret is configured."""
    s = _serializer()
    if s is None:
        return None
    return s.dumps({"sub": normalize_subject(subject)})


def verify_stream_token(token: str) -> str:
    s = _serializer()
    if s is None:
        raise AuthorizationError("Stream tokens are not enabled")
    try:
        data = s.loads(token, max_age=settings.stream_token_ttl_seconds)
    except SignatureExpired:
        raise AuthorizationError("Stream token expired")
    except BadSignature:
        raise AuthorizationError("Invalid stream token")
    subject = normalize_subject(data.get("sub") if isinstance(data, dict) else None)
    if not subject:
        raise AuthorizationError("Invalid stream token")
    return subject
