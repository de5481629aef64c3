"""
Per-user authentication state machine and account operations.

A sign-in is a chain of remote calls::

    InitiateAuth(SRP_A) -> RespondToAuthChallenge(PASSWORD_VERIFIER)
        -> SMS_MFA / SOFTWARE_TOKEN_MFA / CUSTOM_CHALLENGE / NEW_PASSWORD_REQUIRED
           (returned to the caller, answered with a follow-up call)
        -> DEVICE_SRP_AUTH -> DEVICE_PASSWORD_VERIFIER (handled internally)
        -> tokens [-> ConfirmDevice when the server issued a new device]

Challenge-sequencing methods return an :data:`~userpool.challenges.AuthResult`
instead of raising; only :class:`~userpool.errors.ConfigurationError` escapes.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .bigsecret import from_canonical_hex
from .challenges import (
    AuthFailure,
    AuthFlow,
    AuthResult,
    ChallengeName,
    CustomChallengeRequired,
    MfaRequired,
    NewPasswordRequired,
    SignedIn,
)
from .device import DeviceIdentity, PendingDeviceRegistration
from .errors import (
    ConfigurationError,
    NotAuthenticatedError,
    ProtocolInvariantViolation,
    RemoteError,
    StorageError,
    UnsupportedChallengeError,
    UserPoolError,
)
from .srp import SrpEngine, compute_claim_signature, format_timestamp
from .tokens import AccessToken, IdToken, RefreshToken, UserSession

if TYPE_CHECKING:
    from .pool import UserPool

logger = logging.getLogger(__name__)

_USER_ATTRIBUTE_PREFIX = "userAttributes."


def _challenge_parameters(data: dict[str, Any]) -> dict[str, Any]:
    parameters = data.get("ChallengeParameters") or {}
    if not isinstance(parameters, dict):
        raise ProtocolInvariantViolation("ChallengeParameters must be an object")
    return parameters


def _require(parameters: dict[str, Any], name: str) -> str:
    value = parameters.get(name)
    if not value:
        raise ProtocolInvariantViolation(f"Challenge parameters are missing {name}")
    return str(value)


class User:
    """One end-user identity of a pool.

    Holds the continuation token of an outstanding challenge, the remembered
    device (if any) and the current session.
    """

    def __init__(self, username: str, pool: "UserPool"):
        if not username or pool is None:
            raise ConfigurationError("Username and pool information are required.")
        self.username = username
        self.pool = pool
        self.authentication_flow_type = AuthFlow.USER_SRP_AUTH
        self.pending_session_token: Optional[str] = None
        self.device_identity: Optional[DeviceIdentity] = None
        self.signed_in_session: Optional[UserSession] = None

    def __repr__(self) -> str:
        return f"User({self.username!r}, pool={self.pool.user_pool_id!r})"

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _request(self, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        logger.debug("%s for %s", operation, self.username)
        return await self.pool.client.request(operation, params)

    def _key(self, name: str) -> str:
        return self.pool.keys.user_key(self.username, name)

    async def _run_attempt(
        self, step: Callable[[], Awaitable[AuthResult]], *, retain_challenge: bool = False
    ) -> AuthResult:
        """Run one step under the identity's lock, turning errors into :class:`AuthFailure`.

        With ``retain_challenge`` a remote rejection of the answer itself (a
        mistyped code, say) keeps the continuation token so the same challenge
        can be answered again.
        """
        async with self.pool.lock_for(self.username):
            answered_session = self.pending_session_token
            try:
                return await step()
            except ConfigurationError:
                raise
            except UserPoolError as exc:
                if not (
                    retain_challenge
                    and isinstance(exc, RemoteError)
                    and self.pending_session_token == answered_session
                ):
                    self.pending_session_token = None
                logger.debug("Authentication step for %s failed: %s", self.username, exc)
                return AuthFailure(exc)

    def _require_pending_session(self) -> str:
        if not self.pending_session_token:
            raise ConfigurationError("No challenge is pending; call authenticate() first.")
        return self.pending_session_token

    def _require_valid_session(self) -> UserSession:
        session = self.signed_in_session
        if session is None or not session.is_valid():
            raise NotAuthenticatedError("User is not authenticated")
        return session

    def _with_device_key(self, params: dict[str, Any], field: str = "DEVICE_KEY") -> dict[str, Any]:
        if self.device_identity is not None:
            params[field] = self.device_identity.device_key
        return params

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cache_tokens(self) -> None:
        session = self.signed_in_session
        if session is None:
            return
        storage = self.pool.storage
        storage.set_item(self._key("idToken"), session.id_token.jwt_token)
        storage.set_item(self._key("accessToken"), session.access_token.jwt_token)
        if session.refresh_token:
            storage.set_item(self._key("refreshToken"), session.refresh_token.token)
        storage.set_item(self.pool.keys.last_user(), self.username)

    def _clear_cached_tokens(self) -> None:
        storage = self.pool.storage
        for name in ("idToken", "accessToken", "refreshToken"):
            storage.remove_item(self._key(name))
        storage.remove_item(self.pool.keys.last_user())

    def _read_cached_device(self) -> Optional[DeviceIdentity]:
        storage = self.pool.storage
        device_key = storage.get_item(self._key("deviceKey"))
        password = storage.get_item(self._key("randomPasswordKey"))
        group_key = storage.get_item(self._key("deviceGroupKey"))
        if not (device_key and password and group_key):
            return None
        return DeviceIdentity(device_key=device_key, device_group_key=group_key, device_password=password)

    def _load_cached_device(self) -> None:
        if self.device_identity is None:
            self.device_identity = self._read_cached_device()

    def _commit_device(self, pending: PendingDeviceRegistration) -> None:
        self.device_identity = pending.identity()
        storage = self.pool.storage
        storage.set_item(self._key("deviceKey"), pending.device_key)
        storage.set_item(self._key("randomPasswordKey"), pending.secret.password)
        storage.set_item(self._key("deviceGroupKey"), pending.device_group_key)

    def _clear_cached_device(self) -> None:
        self.device_identity = None
        storage = self.pool.storage
        for name in ("deviceKey", "randomPasswordKey", "deviceGroupKey"):
            storage.remove_item(self._key(name))

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def authenticate(
        self, password: str, *, client_metadata: Optional[dict[str, str]] = None
    ) -> AuthResult:
        """Sign in with SRP; see the module docstring for the possible branches."""
        return await self._run_attempt(lambda: self._authenticate_srp(password, client_metadata))

    async def _authenticate_srp(
        self, password: str, client_metadata: Optional[dict[str, str]]
    ) -> AuthResult:
        self.pending_session_token = None
        self._load_cached_device()
        engine = SrpEngine(self.pool.pool_name, self.pool.paranoia)

        auth_parameters: dict[str, Any] = {
            "USERNAME": self.username,
            "SRP_A": engine.public_value_hex(),
        }
        if self.authentication_flow_type == AuthFlow.CUSTOM_AUTH:
            auth_parameters["CHALLENGE_NAME"] = "SRP_A"
        self._with_device_key(auth_parameters)

        request: dict[str, Any] = {
            "AuthFlow": self.authentication_flow_type.value,
            "ClientId": self.pool.client_id,
            "AuthParameters": auth_parameters,
        }
        if client_metadata is not None:
            request["ClientMetadata"] = client_metadata
        data = await self._request("InitiateAuth", request)

        challenge_name = data.get("ChallengeName")
        if challenge_name and challenge_name != ChallengeName.PASSWORD_VERIFIER:
            return await self._handle_auth_response(data)

        parameters = _challenge_parameters(data)
        self.username = parameters.get("USER_ID_FOR_SRP") or self.username
        self._load_cached_device()

        secret_block = _require(parameters, "SECRET_BLOCK")
        try:
            server_public = from_canonical_hex(_require(parameters, "SRP_B"))
            salt = from_canonical_hex(_require(parameters, "SALT"))
        except ValueError as exc:
            raise ProtocolInvariantViolation(f"Malformed SRP challenge parameters: {exc}") from exc

        key = engine.derive_session_key(self.username, password, server_public, salt)
        timestamp = format_timestamp()
        responses = self._with_device_key(
            {
                "USERNAME": self.username,
                "PASSWORD_CLAIM_SECRET_BLOCK": secret_block,
                "TIMESTAMP": timestamp,
                "PASSWORD_CLAIM_SIGNATURE": compute_claim_signature(
                    key, self.pool.pool_name, self.username, secret_block, timestamp
                ),
            }
        )
        result = await self._request(
            "RespondToAuthChallenge",
            {
                "ChallengeName": ChallengeName.PASSWORD_VERIFIER.value,
                "ClientId": self.pool.client_id,
                "ChallengeResponses": responses,
                "Session": data.get("Session"),
            },
        )
        return await self._handle_auth_response(result)

    async def _handle_auth_response(self, data: dict[str, Any]) -> AuthResult:
        challenge_name = data.get("ChallengeName")
        parameters = _challenge_parameters(data)

        if challenge_name in (ChallengeName.SMS_MFA, ChallengeName.SOFTWARE_TOKEN_MFA):
            self.pending_session_token = data.get("Session")
            return MfaRequired(ChallengeName(challenge_name), parameters)

        if challenge_name == ChallengeName.CUSTOM_CHALLENGE:
            self.pending_session_token = data.get("Session")
            return CustomChallengeRequired(parameters)

        if challenge_name == ChallengeName.NEW_PASSWORD_REQUIRED:
            self.pending_session_token = data.get("Session")
            return self._new_password_required(parameters)

        if challenge_name == ChallengeName.DEVICE_SRP_AUTH:
            self.pending_session_token = data.get("Session")
            return await self._authenticate_device()

        result = data.get("AuthenticationResult")
        if not result:
            if challenge_name:
                raise UnsupportedChallengeError(str(challenge_name))
            raise ProtocolInvariantViolation("Response carries neither a challenge nor tokens")
        return await self._sign_in(result)

    def _new_password_required(self, parameters: dict[str, Any]) -> NewPasswordRequired:
        try:
            user_attributes = json.loads(parameters.get("userAttributes") or "{}")
            raw_required = json.loads(parameters.get("requiredAttributes") or "[]")
        except (TypeError, json.JSONDecodeError) as exc:
            raise ProtocolInvariantViolation(f"Malformed NEW_PASSWORD_REQUIRED parameters: {exc}") from exc
        if not isinstance(user_attributes, dict):
            raise ProtocolInvariantViolation("userAttributes must be a JSON object")
        if not isinstance(raw_required, list) or not all(isinstance(name, str) for name in raw_required):
            raise ProtocolInvariantViolation("requiredAttributes must be a JSON list of names")
        required = [
            name[len(_USER_ATTRIBUTE_PREFIX):] if name.startswith(_USER_ATTRIBUTE_PREFIX) else name
            for name in raw_required
        ]
        return NewPasswordRequired(user_attributes=user_attributes, required_attributes=required)

    async def _sign_in(self, result: dict[str, Any]) -> AuthResult:
        try:
            session = UserSession.from_authentication_result(result)
        except ValueError as exc:
            raise ProtocolInvariantViolation(str(exc)) from exc
        self.signed_in_session = session
        self.pending_session_token = None
        self._cache_tokens()
        logger.info("Signed in %s", self.username)

        new_device = result.get("NewDeviceMetadata")
        if not new_device:
            return SignedIn(session)
        return await self._confirm_new_device(new_device, session)

    async def _confirm_new_device(self, new_device: dict[str, Any], session: UserSession) -> AuthResult:
        pending = PendingDeviceRegistration.generate(
            device_key=_require(new_device, "DeviceKey"),
            device_group_key=_require(new_device, "DeviceGroupKey"),
            paranoia=self.pool.paranoia,
        )
        data = await self._request(
            "ConfirmDevice",
            pending.confirm_device_request(session.access_token.jwt_token, self.pool.device_name),
        )
        try:
            self._commit_device(pending)
        except StorageError as exc:
            logger.warning("Device %s registered but could not be cached: %s", pending.device_key, exc)
            raise
        logger.info("Registered device %s for %s", pending.device_key, self.username)
        return SignedIn(session, user_confirmation_necessary=bool(data.get("UserConfirmationNecessary")))

    async def _authenticate_device(self) -> AuthResult:
        device = self.device_identity
        if device is None:
            raise UnsupportedChallengeError(
                ChallengeName.DEVICE_SRP_AUTH.value, "requested but no device is remembered"
            )
        engine = SrpEngine(device.device_group_key, self.pool.paranoia)
        data = await self._request(
            "RespondToAuthChallenge",
            {
                "ChallengeName": ChallengeName.DEVICE_SRP_AUTH.value,
                "ClientId": self.pool.client_id,
                "ChallengeResponses": {
                    "USERNAME": self.username,
                    "DEVICE_KEY": device.device_key,
                    "SRP_A": engine.public_value_hex(),
                },
                "Session": self.pending_session_token,
            },
        )

        parameters = _challenge_parameters(data)
        secret_block = _require(parameters, "SECRET_BLOCK")
        try:
            server_public = from_canonical_hex(_require(parameters, "SRP_B"))
            salt = from_canonical_hex(_require(parameters, "SALT"))
        except ValueError as exc:
            raise ProtocolInvariantViolation(f"Malformed device SRP parameters: {exc}") from exc

        key = engine.derive_session_key(device.device_key, device.device_password, server_public, salt)
        timestamp = format_timestamp()
        result = await self._request(
            "RespondToAuthChallenge",
            {
                "ChallengeName": ChallengeName.DEVICE_PASSWORD_VERIFIER.value,
                "ClientId": self.pool.client_id,
                "ChallengeResponses": {
                    "USERNAME": self.username,
                    "PASSWORD_CLAIM_SECRET_BLOCK": secret_block,
                    "TIMESTAMP": timestamp,
                    "PASSWORD_CLAIM_SIGNATURE": compute_claim_signature(
                        key, device.device_group_key, device.device_key, secret_block, timestamp
                    ),
                    "DEVICE_KEY": device.device_key,
                },
                "Session": data.get("Session"),
            },
        )
        return await self._handle_auth_response(result)

    # ------------------------------------------------------------------
    # Challenge answers
    # ------------------------------------------------------------------

    async def _answer(self, challenge: ChallengeName, responses: dict[str, Any]) -> AuthResult:
        params: dict[str, Any] = {
            "ChallengeName": challenge.value,
            "ClientId": self.pool.client_id,
            "ChallengeResponses": responses,
            "Session": self.pending_session_token,
        }
        data = await self._request("RespondToAuthChallenge", params)
        return await self._handle_auth_response(data)

    async def send_mfa_code(
        self, code: str, mfa_type: ChallengeName = ChallengeName.SMS_MFA
    ) -> AuthResult:
        """Answer an :class:`~userpool.challenges.MfaRequired` result."""
        self._require_pending_session()
        mfa_type = ChallengeName(mfa_type)
        if mfa_type not in (ChallengeName.SMS_MFA, ChallengeName.SOFTWARE_TOKEN_MFA):
            raise ConfigurationError(f"{mfa_type.value} is not an MFA challenge")

        async def step() -> AuthResult:
            self._load_cached_device()
            responses: dict[str, Any] = {"USERNAME": self.username, "SMS_MFA_CODE": code}
            if mfa_type == ChallengeName.SOFTWARE_TOKEN_MFA:
                responses["SOFTWARE_TOKEN_MFA_CODE"] = code
            return await self._answer(mfa_type, self._with_device_key(responses))

        return await self._run_attempt(step, retain_challenge=True)

    async def send_custom_challenge_answer(self, answer: str) -> AuthResult:
        self._require_pending_session()

        async def step() -> AuthResult:
            self._load_cached_device()
            responses = self._with_device_key({"USERNAME": self.username, "ANSWER": answer})
            return await self._answer(ChallengeName.CUSTOM_CHALLENGE, responses)

        return await self._run_attempt(step, retain_challenge=True)

    async def complete_new_password_challenge(
        self, new_password: str, required_attributes: Optional[dict[str, str]] = None
    ) -> AuthResult:
        self._require_pending_session()
        if not new_password:
            raise ConfigurationError("New password is required.")

        async def step() -> AuthResult:
            self._load_cached_device()
            responses: dict[str, Any] = {
                f"{_USER_ATTRIBUTE_PREFIX}{name}": value
                for name, value in (required_attributes or {}).items()
            }
            responses["NEW_PASSWORD"] = new_password
            responses["USERNAME"] = self.username
            return await self._answer(ChallengeName.NEW_PASSWORD_REQUIRED, self._with_device_key(responses))

        return await self._run_attempt(step, retain_challenge=True)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def get_session(self) -> UserSession:
        """Return a valid session from memory, the cache, or a refresh."""
        if self.signed_in_session is not None and self.signed_in_session.is_valid():
            return self.signed_in_session

        storage = self.pool.storage
        id_token = storage.get_item(self._key("idToken"))
        access_token = storage.get_item(self._key("accessToken"))
        refresh_token = RefreshToken(storage.get_item(self._key("refreshToken")))
        if not id_token or not access_token:
            raise NotAuthenticatedError("No cached tokens, please authenticate.")

        cached = UserSession(IdToken(id_token), AccessToken(access_token), refresh_token or None)
        if cached.is_valid():
            self.signed_in_session = cached
            return cached
        if not refresh_token:
            raise NotAuthenticatedError("Cannot retrieve a new session. Please authenticate.")
        return await self.refresh_session(refresh_token)

    async def refresh_session(self, refresh_token: RefreshToken) -> UserSession:
        self._load_cached_device()
        auth_parameters = self._with_device_key({"REFRESH_TOKEN": refresh_token.token})
        try:
            data = await self._request(
                "InitiateAuth",
                {
                    "ClientId": self.pool.client_id,
                    "AuthFlow": AuthFlow.REFRESH_TOKEN_AUTH.value,
                    "AuthParameters": auth_parameters,
                },
            )
        except RemoteError as exc:
            if exc.code == "NotAuthorizedException":
                self._clear_cached_tokens()
            raise

        try:
            session = UserSession.from_authentication_result(
                data.get("AuthenticationResult") or {}, fallback_refresh_token=refresh_token
            )
        except ValueError as exc:
            raise ProtocolInvariantViolation(str(exc)) from exc
        self.signed_in_session = session
        self._cache_tokens()
        return session

    def sign_out(self) -> None:
        """Forget the session locally (the remembered device is kept)."""
        self.signed_in_session = None
        self.pending_session_token = None
        self._clear_cached_tokens()
        logger.info("Signed out %s", self.username)

    async def global_sign_out(self) -> None:
        """Revoke every token issued to this user, then sign out locally."""
        session = self._require_valid_session()
        await self._request("GlobalSignOut", {"AccessToken": session.access_token.jwt_token})
        self.sign_out()

    # ------------------------------------------------------------------
    # Registration and password
    # ------------------------------------------------------------------

    async def confirm_registration(self, code: str, force_alias_creation: bool = False) -> None:
        await self._request(
            "ConfirmSignUp",
            {
                "ClientId": self.pool.client_id,
                "ConfirmationCode": code,
                "Username": self.username,
                "ForceAliasCreation": force_alias_creation,
            },
        )

    async def resend_confirmation_code(self) -> dict[str, Any]:
        data = await self._request(
            "ResendConfirmationCode", {"ClientId": self.pool.client_id, "Username": self.username}
        )
        return data.get("CodeDeliveryDetails") or {}

    async def forgot_password(self) -> dict[str, Any]:
        """Start a password reset; returns where the code was sent."""
        data = await self._request(
            "ForgotPassword", {"ClientId": self.pool.client_id, "Username": self.username}
        )
        return data.get("CodeDeliveryDetails") or {}

    async def confirm_password(self, code: str, new_password: str) -> None:
        await self._request(
            "ConfirmForgotPassword",
            {
                "ClientId": self.pool.client_id,
                "Username": self.username,
                "ConfirmationCode": code,
                "Password": new_password,
            },
        )

    async def change_password(self, old_password: str, new_password: str) -> None:
        session = self._require_valid_session()
        await self._request(
            "ChangePassword",
            {
                "PreviousPassword": old_password,
                "ProposedPassword": new_password,
                "AccessToken": session.access_token.jwt_token,
            },
        )

    # ------------------------------------------------------------------
    # MFA settings
    # ------------------------------------------------------------------

    async def _set_mfa_options(self, options: list[dict[str, str]]) -> None:
        session = self._require_valid_session()
        await self._request(
            "SetUserSettings",
            {"MFAOptions": options, "AccessToken": session.access_token.jwt_token},
        )

    async def enable_mfa(self) -> None:
        await self._set_mfa_options([{"DeliveryMedium": "SMS", "AttributeName": "phone_number"}])

    async def disable_mfa(self) -> None:
        await self._set_mfa_options([])

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def _require_device(self) -> DeviceIdentity:
        self._load_cached_device()
        if self.device_identity is None:
            raise ConfigurationError(f"No remembered device for {self.username}")
        return self.device_identity

    async def get_device(self) -> dict[str, Any]:
        session = self._require_valid_session()
        device = self._require_device()
        data = await self._request(
            "GetDevice",
            {"AccessToken": session.access_token.jwt_token, "DeviceKey": device.device_key},
        )
        return data.get("Device") or {}

    async def list_devices(self, limit: int, pagination_token: Optional[str] = None) -> dict[str, Any]:
        session = self._require_valid_session()
        params: dict[str, Any] = {"AccessToken": session.access_token.jwt_token, "Limit": limit}
        if pagination_token:
            params["PaginationToken"] = pagination_token
        return await self._request("ListDevices", params)

    async def forget_device(self) -> None:
        """Deregister the remembered device and drop its cached secret."""
        session = self._require_valid_session()
        device = self._require_device()
        await self._request(
            "ForgetDevice",
            {"AccessToken": session.access_token.jwt_token, "DeviceKey": device.device_key},
        )
        self._clear_cached_device()

    async def _update_device_status(self, status: str) -> None:
        session = self._require_valid_session()
        device = self._require_device()
        await self._request(
            "UpdateDeviceStatus",
            {
                "AccessToken": session.access_token.jwt_token,
                "DeviceKey": device.device_key,
                "DeviceRememberedStatus": status,
            },
        )

    async def set_device_status_remembered(self) -> None:
        await self._update_device_status("remembered")

    async def set_device_status_not_remembered(self) -> None:
        await self._update_device_status("not_remembered")
