"""Step controllers that drive the signup and password-reset forms.

Each controller walks ``collecting_details -> otp_sent -> complete`` against the
HTTP API, with password reset stopping at ``verified`` between the two. Local
checks run before any request is made, and the countdown only mirrors the
server's expiry for display.
"""

import enum
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import anyio
import httpx

from storefront_auth.core.errors import AuthError
from storefront_auth.services import validation

DEFAULT_EXPIRES_IN = 300


class FlowStep(str, enum.Enum):
    COLLECTING_DETAILS = "collecting_details"
    OTP_SENT = "otp_sent"
    VERIFIED = "verified"
    COMPLETE = "complete"


class FlowError(Exception):
    """A failure the form shows to the user, tagged with the API error code."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class Countdown:
    """Seconds left on the current code, ticking once per second."""

    def __init__(self) -> None:
        self.remaining = 0

    def reset(self, seconds: int) -> None:
        self.remaining = max(0, int(seconds))

    def tick(self) -> int:
        if self.remaining > 0:
            self.remaining -= 1
        return self.remaining

    @property
    def expired(self) -> bool:
        return self.remaining == 0

    async def run(self, on_tick: Optional[Callable[[int], Awaitable[None]]] = None) -> None:
        while self.remaining > 0:
            await anyio.sleep(1)
            remaining = self.tick()
            if on_tick is not None:
                await on_tick(remaining)

    @staticmethod
    def format(seconds: int) -> str:
        mins, secs = divmod(max(0, seconds), 60)
        return f"{mins}:{secs:02d}"


def _local(check: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return check(*args, **kwargs)
    except AuthError as exc:
        raise FlowError(exc.code, exc.detail)


class StepController(ABC):
    """Shared state and transitions for both OTP-gated forms."""

    purpose: str = ""

    def __init__(self, client: httpx.AsyncClient, otp_length: int = 6):
        self.client = client
        self.otp_length = otp_length
        self.step = FlowStep.COLLECTING_DETAILS
        self.email = ""
        self.otp_code = ""
        self.dev_otp: Optional[str] = None
        self.email_sent: Optional[bool] = None
        self.countdown = Countdown()

    def _require_step(self, *steps: FlowStep) -> None:
        if self.step not in steps:
            raise RuntimeError(f"Not allowed in step {self.step.value}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        response = await self.client.request(method, path, **kwargs)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            raise FlowError(
                data.get("error", "ServiceUnavailable"),
                data.get("message", "Something went wrong. Please try again."),
            )
        return data

    @abstractmethod
    async def _send_code(self) -> None:
        """Request a code for the current email and record the response."""

    def _code_sent(self, data: dict) -> None:
        self.countdown.reset(data.get("expiresIn") or DEFAULT_EXPIRES_IN)
        self.dev_otp = data.get("devOtp")
        self.email_sent = data.get("emailSent")
        self.step = FlowStep.OTP_SENT

    def _ready_code(self, code: str) -> str:
        code = (code or "").strip()
        if not validation.is_code_shaped(code, self.otp_length):
            raise FlowError("IncompleteCode", f"Please enter the {self.otp_length}-digit verification code.")
        self.otp_code = code
        return code

    def _clear_code(self) -> None:
        self.otp_code = ""

    async def resend(self) -> None:
        """Drop the typed code and request a fresh one, restarting the countdown."""
        self._require_step(FlowStep.OTP_SENT)
        self.otp_code = ""
        self.dev_otp = None
        await self._send_code()

    def back(self) -> None:
        """Return to the details form. The server code stays until a new one supersedes it."""
        self._require_step(FlowStep.OTP_SENT, FlowStep.VERIFIED)
        self.step = FlowStep.COLLECTING_DETAILS
        self.otp_code = ""
        self.dev_otp = None
        self.countdown.reset(0)

    async def resume(self, email: str) -> bool:
        """Pick up a code issued before a page reload, if one is still active."""
        self._require_step(FlowStep.COLLECTING_DETAILS)
        email = _local(validation.clean_email, email)
        data = await self._request("GET", "/auth/otp-status", params={"email": email, "purpose": self.purpose})
        if not data.get("active"):
            return False
        self.email = email
        self.countdown.reset(data["expiresIn"])
        self.step = FlowStep.OTP_SENT
        return True


class SignupFlow(StepController):
    """Collect details, send a signup code, then verify-and-create in one call.

    The server consumes the code and creates the account together, so signup
    moves from ``otp_sent`` straight to ``complete``.
    """

    purpose = "signup"

    def __init__(self, client: httpx.AsyncClient, otp_length: int = 6):
        super().__init__(client, otp_length)
        self.password = ""
        self.first_name = ""
        self.last_name = ""
        self.user: Optional[dict] = None

    async def submit_details(
        self, email: str, password: str, confirm_password: str, first_name: str, last_name: str
    ) -> None:
        self._require_step(FlowStep.COLLECTING_DETAILS)
        _local(
            validation.require,
            email=email,
            password=password,
            firstName=first_name,
            lastName=last_name,
        )
        self.email = _local(validation.clean_email, email)
        _local(validation.check_password, password, confirm_password)

        self.password = password
        self.first_name = first_name.strip()
        self.last_name = last_name.strip()
        await self._send_code()

    async def _send_code(self) -> None:
        data = await self._request("POST", "/auth/send-otp", json={"email": self.email, "purpose": self.purpose})
        self._code_sent(data)

    async def submit_code(self, code: str) -> dict:
        self._require_step(FlowStep.OTP_SENT)
        code = self._ready_code(code)
        try:
            data = await self._request(
                "POST",
                "/auth/signup-with-otp",
                json={
                    "email": self.email,
                    "password": self.password,
                    "firstName": self.first_name,
                    "lastName": self.last_name,
                    "otpCode": code,
                },
            )
        except FlowError:
            self._clear_code()
            raise

        self.user = data["user"]
        self.password = ""
        self.countdown.reset(0)
        self.step = FlowStep.COMPLETE
        return self.user


class PasswordResetFlow(StepController):
    """Send a reset code, check it, then submit the new password with the code."""

    purpose = "forgot_password"

    async def submit_details(self, email: str) -> None:
        self._require_step(FlowStep.COLLECTING_DETAILS)
        _local(validation.require, email=email)
        self.email = _local(validation.clean_email, email)
        await self._send_code()

    async def _send_code(self) -> None:
        data = await self._request("POST", "/auth/forgot-password", json={"email": self.email})
        self._code_sent(data)

    async def submit_code(self, code: str) -> None:
        self._require_step(FlowStep.OTP_SENT)
        code = self._ready_code(code)
        try:
            await self._request(
                "POST", "/auth/verify-otp", json={"email": self.email, "code": code, "purpose": self.purpose}
            )
        except FlowError:
            self._clear_code()
            raise
        self.step = FlowStep.VERIFIED

    async def submit_new_password(self, new_password: str, confirm_password: str) -> None:
        self._require_step(FlowStep.VERIFIED)
        _local(validation.require, newPassword=new_password)
        _local(validation.check_password, new_password, confirm_password)
        try:
            await self._request(
                "POST",
                "/auth/reset-password",
                json={"email": self.email, "otpCode": self.otp_code, "newPassword": new_password},
            )
        except FlowError as exc:
            if exc.code == "InvalidOrExpiredCode":
                self.step = FlowStep.OTP_SENT
                self._clear_code()
            raise
        self.countdown.reset(0)
        self.step = FlowStep.COMPLETE
