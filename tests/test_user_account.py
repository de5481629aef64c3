"""Session lifecycle and account operations of User."""

import copy
import time
import unittest

import jwt

from userpool.errors import ConfigurationError, NotAuthenticatedError, RemoteError
from userpool.pool import UserPool
from userpool.storage import MemoryStorage
from userpool.tokens import AccessToken, IdToken, RefreshToken, UserSession
from userpool.user import User

POOL_ID = "us-east-1_AbCdEf123"
CLIENT_ID = "cid"
PREFIX = f"CognitoIdentityServiceProvider.{CLIENT_ID}.alice"

_SIGNING_KEY = "unit-test-signing-key-0123456789abcdef"


def make_jwt(exp_offset: int) -> str:
    return jwt.encode({"exp": int(time.time()) + exp_offset}, _SIGNING_KEY, algorithm="HS256")


class _RecordingClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def request(self, operation, params):
        self.calls.append((operation, copy.deepcopy(params)))
        response = self.responses.pop(0) if self.responses else {}
        if isinstance(response, Exception):
            raise response
        return response


class AccountTestBase(unittest.IsolatedAsyncioTestCase):
    def make_user(self, *responses):
        self.client = _RecordingClient(*responses)
        self.storage = MemoryStorage()
        self.pool = UserPool(POOL_ID, CLIENT_ID, client=self.client, storage=self.storage)
        return User("alice", self.pool)

    def cache_tokens(self, exp_offset, refresh="cached-refresh"):
        self.id_token = make_jwt(exp_offset)
        self.access_token = make_jwt(exp_offset)
        self.storage.set_item(f"{PREFIX}.idToken", self.id_token)
        self.storage.set_item(f"{PREFIX}.accessToken", self.access_token)
        if refresh:
            self.storage.set_item(f"{PREFIX}.refreshToken", refresh)
        self.storage.set_item(f"CognitoIdentityServiceProvider.{CLIENT_ID}.LastAuthUser", "alice")

    def cache_device(self):
        self.storage.set_item(f"{PREFIX}.deviceKey", "dk")
        self.storage.set_item(f"{PREFIX}.randomPasswordKey", "pw")
        self.storage.set_item(f"{PREFIX}.deviceGroupKey", "gk")

    def sign_in(self, user):
        user.signed_in_session = UserSession(
            IdToken(make_jwt(3600)), AccessToken(make_jwt(3600)), RefreshToken("r")
        )
        return user.signed_in_session.access_token.jwt_token


class SessionTests(AccountTestBase):
    async def test_in_memory_session_is_returned(self):
        user = self.make_user()
        self.sign_in(user)
        self.assertIs(await user.get_session(), user.signed_in_session)
        self.assertEqual(self.client.calls, [])

    async def test_valid_cached_tokens(self):
        user = self.make_user()
        self.cache_tokens(3600)

        session = await user.get_session()

        self.assertEqual(session.id_token.jwt_token, self.id_token)
        self.assertEqual(session.refresh_token.token, "cached-refresh")
        self.assertEqual(self.client.calls, [])

    async def test_expired_tokens_are_refreshed_and_refresh_token_carried_forward(self):
        new_id, new_access = make_jwt(3600), make_jwt(3600)
        user = self.make_user({"AuthenticationResult": {"IdToken": new_id, "AccessToken": new_access}})
        self.cache_tokens(-10)
        self.cache_device()

        session = await user.get_session()

        self.assertEqual(
            self.client.calls,
            [
                (
                    "InitiateAuth",
                    {
                        "ClientId": CLIENT_ID,
                        "AuthFlow": "REFRESH_TOKEN_AUTH",
                        "AuthParameters": {"REFRESH_TOKEN": "cached-refresh", "DEVICE_KEY": "dk"},
                    },
                )
            ],
        )
        self.assertEqual(session.id_token.jwt_token, new_id)
        self.assertEqual(session.refresh_token.token, "cached-refresh")
        self.assertEqual(self.storage.get_item(f"{PREFIX}.accessToken"), new_access)
        self.assertEqual(self.storage.get_item(f"{PREFIX}.refreshToken"), "cached-refresh")

    async def test_refresh_rejection_clears_cache(self):
        user = self.make_user(RemoteError("NotAuthorizedException", "Refresh Token has expired"))
        self.cache_tokens(-10)

        with self.assertRaises(RemoteError):
            await user.get_session()

        self.assertIsNone(self.storage.get_item(f"{PREFIX}.idToken"))
        self.assertIsNone(self.storage.get_item(f"{PREFIX}.refreshToken"))

    async def test_refresh_transient_error_keeps_cache(self):
        user = self.make_user(RemoteError("TimeoutError", "slow", retryable=True))
        self.cache_tokens(-10)

        with self.assertRaises(RemoteError):
            await user.get_session()

        self.assertEqual(self.storage.get_item(f"{PREFIX}.refreshToken"), "cached-refresh")

    async def test_no_cached_tokens(self):
        user = self.make_user()
        with self.assertRaises(NotAuthenticatedError):
            await user.get_session()

    async def test_expired_without_refresh_token(self):
        user = self.make_user()
        self.cache_tokens(-10, refresh=None)
        with self.assertRaises(NotAuthenticatedError):
            await user.get_session()

    async def test_sign_out_clears_cache(self):
        user = self.make_user()
        self.cache_tokens(3600)
        await user.get_session()

        user.sign_out()

        self.assertIsNone(user.signed_in_session)
        self.assertIsNone(self.storage.get_item(f"{PREFIX}.idToken"))
        self.assertIsNone(self.pool.get_current_user())

    async def test_global_sign_out(self):
        user = self.make_user()
        access = self.sign_in(user)

        await user.global_sign_out()

        self.assertEqual(self.client.calls, [("GlobalSignOut", {"AccessToken": access})])
        self.assertIsNone(user.signed_in_session)

    async def test_global_sign_out_requires_session(self):
        user = self.make_user()
        with self.assertRaises(NotAuthenticatedError):
            await user.global_sign_out()


class RegistrationTests(AccountTestBase):
    async def test_confirm_registration(self):
        user = self.make_user()
        await user.confirm_registration("123456", force_alias_creation=True)
        self.assertEqual(
            self.client.calls,
            [
                (
                    "ConfirmSignUp",
                    {
                        "ClientId": CLIENT_ID,
                        "ConfirmationCode": "123456",
                        "Username": "alice",
                        "ForceAliasCreation": True,
                    },
                )
            ],
        )

    async def test_resend_and_forgot_return_delivery_details(self):
        details = {"Destination": "a***@e***.com", "DeliveryMedium": "EMAIL"}
        user = self.make_user({"CodeDeliveryDetails": details}, {"CodeDeliveryDetails": details})

        self.assertEqual(await user.resend_confirmation_code(), details)
        self.assertEqual(await user.forgot_password(), details)
        self.assertEqual(
            [operation for operation, _ in self.client.calls],
            ["ResendConfirmationCode", "ForgotPassword"],
        )
        self.assertEqual(self.client.calls[1][1], {"ClientId": CLIENT_ID, "Username": "alice"})

    async def test_confirm_password(self):
        user = self.make_user()
        await user.confirm_password("code", "n3w")
        self.assertEqual(
            self.client.calls[0],
            (
                "ConfirmForgotPassword",
                {"ClientId": CLIENT_ID, "Username": "alice", "ConfirmationCode": "code", "Password": "n3w"},
            ),
        )

    async def test_change_password(self):
        user = self.make_user()
        access = self.sign_in(user)
        await user.change_password("old", "new")
        self.assertEqual(
            self.client.calls[0],
            ("ChangePassword", {"PreviousPassword": "old", "ProposedPassword": "new", "AccessToken": access}),
        )

    async def test_change_password_requires_session(self):
        user = self.make_user()
        with self.assertRaises(NotAuthenticatedError):
            await user.change_password("old", "new")
        self.assertEqual(self.client.calls, [])

    async def test_remote_errors_raise(self):
        user = self.make_user(RemoteError("CodeMismatchException", "Invalid code"))
        with self.assertRaises(RemoteError):
            await user.confirm_registration("bad")


class MfaSettingsTests(AccountTestBase):
    async def test_enable_and_disable(self):
        user = self.make_user()
        access = self.sign_in(user)

        await user.enable_mfa()
        await user.disable_mfa()

        self.assertEqual(
            self.client.calls,
            [
                (
                    "SetUserSettings",
                    {
                        "MFAOptions": [{"DeliveryMedium": "SMS", "AttributeName": "phone_number"}],
                        "AccessToken": access,
                    },
                ),
                ("SetUserSettings", {"MFAOptions": [], "AccessToken": access}),
            ],
        )


class DeviceOperationTests(AccountTestBase):
    async def test_get_device(self):
        user = self.make_user({"Device": {"DeviceKey": "dk"}})
        access = self.sign_in(user)
        self.cache_device()

        device = await user.get_device()

        self.assertEqual(device, {"DeviceKey": "dk"})
        self.assertEqual(self.client.calls[0], ("GetDevice", {"AccessToken": access, "DeviceKey": "dk"}))

    async def test_list_devices(self):
        user = self.make_user({"Devices": [], "PaginationToken": "next"})
        access = self.sign_in(user)

        await user.list_devices(10)
        await user.list_devices(10, pagination_token="next")

        self.assertEqual(self.client.calls[0][1], {"AccessToken": access, "Limit": 10})
        self.assertEqual(self.client.calls[1][1], {"AccessToken": access, "Limit": 10, "PaginationToken": "next"})

    async def test_forget_device_clears_cache(self):
        user = self.make_user()
        self.sign_in(user)
        self.cache_device()

        await user.forget_device()

        self.assertEqual(self.client.calls[0][0], "ForgetDevice")
        self.assertIsNone(user.device_identity)
        self.assertIsNone(self.storage.get_item(f"{PREFIX}.deviceKey"))
        self.assertIsNone(self.storage.get_item(f"{PREFIX}.randomPasswordKey"))

    async def test_forget_device_failure_keeps_cache(self):
        user = self.make_user(RemoteError("ResourceNotFoundException", "Device does not exist."))
        self.sign_in(user)
        self.cache_device()

        with self.assertRaises(RemoteError):
            await user.forget_device()

        self.assertEqual(self.storage.get_item(f"{PREFIX}.deviceKey"), "dk")

    async def test_update_device_status(self):
        user = self.make_user()
        self.sign_in(user)
        self.cache_device()

        await user.set_device_status_remembered()
        await user.set_device_status_not_remembered()

        self.assertEqual(
            [params["DeviceRememberedStatus"] for _, params in self.client.calls],
            ["remembered", "not_remembered"],
        )

    async def test_device_operations_need_a_device(self):
        user = self.make_user()
        self.sign_in(user)
        with self.assertRaises(ConfigurationError):
            await user.get_device()
