from itsdangerous import BadData, URLSafeTimedSerializer
from pydantic import ValidationError

from config import get_settings
from schemas import RecurringApprovedEvent


class InvalidEventError(ValueError):
    pass


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.event_secret, salt="recurring-approved")


def sign_event(event: RecurringApprovedEvent) -> str:
    return _serializer().dumps(event.model_dump(mode="json", by_alias=True))


def verify_event(token: str) -> RecurringApprovedEvent:
    settings = get_settings()
    try:
        payload = _serializer().loads(token, max_age=settings.event_max_age_secs)
    except BadData as exc:
        raise InvalidEventError("Invalid or expired event signature") from exc
    try:
        return RecurringApprovedEvent.model_validate(payload)
    except ValidationError as exc:
        raise InvalidEventError(str(exc)) from exc
