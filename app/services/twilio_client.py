# app/services/twilio_client.py
from typing import Optional

import requests
from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client as TwilioSDKClient

from app.config import Settings
from app.errors import ProviderError
from app.schemas.batch import CallHandle, CallStatus


# Twilio CallStatus values that mean "nobody picked up, try again later"
_UNANSWERED_STATUSES = {"no-answer", "busy", "canceled"}


class TwilioClient:
    """
    Thin wrapper around the Twilio Python SDK, exposing the CallProvider
    interface.

    This makes it easy to:
    - centralize config (account SID, auth token, from number, webhook URL)
    - mock in tests by replacing `_client` with a fake.

    Twilio carries no transcript, so completed calls are reported with an
    empty one.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        voice_url: str,
        timeout: Optional[float] = None,
    ):
        http_client = TwilioHttpClient(timeout=timeout)
        self._client = TwilioSDKClient(account_sid, auth_token, http_client=http_client)
        self._from_number = from_number
        self._voice_url = voice_url

    def place_call(self, phone: str) -> CallHandle:
        """
        Create an outbound call via Twilio and return its Call SID.
        """
        try:
            call = self._client.calls.create(
                to=phone,
                from_=self._from_number,
                url=self._voice_url,
            )
        except (TwilioException, requests.RequestException) as e:
            raise ProviderError(f"Failed to call {phone}: {e}") from e
        return CallHandle(call_id=call.sid)

    def get_call_status(self, call_id: str) -> CallStatus:
        try:
            call = self._client.calls(call_id).fetch()
        except (TwilioException, requests.RequestException) as e:
            raise ProviderError(f"Failed to check call status: {e}") from e

        status = call.status
        duration = float(call.duration) if call.duration else None

        if status == "completed":
            return CallStatus(
                completed=True,
                answered_by=call.answered_by,
                concatenated_transcript="",
                duration_seconds=duration,
                status=status,
            )
        if status in _UNANSWERED_STATUSES:
            return CallStatus(
                completed=True,
                answered_by="no-answer",
                duration_seconds=duration,
                status=status,
            )
        if status == "failed":
            return CallStatus(
                completed=False,
                status="failed",
                error_message="Twilio reported the call as failed",
            )
        # queued / ringing / in-progress
        return CallStatus(completed=False, status=status)


def build_twilio_client(settings: Settings) -> TwilioClient:
    """
    Raises ProviderError if configuration is incomplete.
    """
    missing: list[str] = []
    if not settings.TWILIO_ACCOUNT_SID:
        missing.append("TWILIO_ACCOUNT_SID")
    if not settings.TWILIO_AUTH_TOKEN:
        missing.append("TWILIO_AUTH_TOKEN")
    if not settings.TWILIO_PHONE_NUMBER:
        missing.append("TWILIO_PHONE_NUMBER")
    if not settings.TWILIO_VOICE_WEBHOOK_URL:
        missing.append("TWILIO_VOICE_WEBHOOK_URL")

    if missing:
        raise ProviderError(f"Twilio not configured, missing: {', '.join(missing)}")

    return TwilioClient(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_PHONE_NUMBER,
        voice_url=settings.TWILIO_VOICE_WEBHOOK_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
