"""
Tests for signup, login, password management and user endpoints.
"""

import smtplib
from unittest.mock import ANY

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from api.auth import PasswordHasher, hash_reset_token
from api.main import create_app

SIGNUP_BODY = {
    "name": "A",
    "email": "a@b.com",
    "password": "secret12",
    "passwordConfirm": "secret12",
}


@pytest.fixture
def stored_password():
    """A bcrypt hash of ``secret12``."""
    return PasswordHasher(rounds=4)._hash("secret12")


class TestSignup:
    """Test cases for POST /signup."""

    def test_signup_issues_token(self, client, mock_db_service, user_factory):
        created = user_factory(name="A", email="a@b.com", password="$2b$04$hashed")
        mock_db_service.users.create.return_value = created

        response = client.post("/api/v1/user/signup", json=SIGNUP_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["token"]
        assert data["data"]["user"]["email"] == "a@b.com"
        assert "password" not in data["data"]["user"]
        assert "passwordConfirm" not in data["data"]["user"]

        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"jwt={data['token']}")
        assert "HttpOnly" in cookie
        assert "Secure" in cookie

    def test_signup_cookie_not_secure_in_development(self, dev_settings, mock_db_service,
                                                     mock_email_sender, user_factory):
        app = create_app(dev_settings, db_service=mock_db_service, email_sender=mock_email_sender)
        client = TestClient(app)
        mock_db_service.users.create.return_value = user_factory(email="a@b.com")

        response = client.post("/api/v1/user/signup", json=SIGNUP_BODY)

        assert response.status_code == 200
        assert "Secure" not in response.headers["set-cookie"]
        assert "HttpOnly" in response.headers["set-cookie"]

    def test_signup_password_mismatch(self, client, mock_db_service):
        body = {**SIGNUP_BODY, "passwordConfirm": "different1"}

        response = client.post("/api/v1/user/signup", json=body)

        assert response.status_code == 400
        assert response.json()["message"] == "Passwords do not match!"
        mock_db_service.users.create.assert_not_called()

    def test_signup_invalid_email(self, client):
        response = client.post("/api/v1/user/signup", json={**SIGNUP_BODY, "email": "not-an-email"})
        assert response.status_code == 400
        assert response.json()["message"].startswith("email: ")

    def test_duplicate_email_is_client_error(self, client, mock_db_service, user_factory):
        mock_db_service.users.create.side_effect = [
            user_factory(email="a@b.com"),
            DuplicateKeyError("E11000 duplicate key error", 11000, {"keyValue": {"email": "a@b.com"}}),
        ]

        first = client.post("/api/v1/user/signup", json=SIGNUP_BODY)
        second = client.post("/api/v1/user/signup", json=SIGNUP_BODY)

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["status"] == "fail"


class TestLogin:
    """Test cases for POST /login."""

    def test_login_success(self, client, mock_db_service, user_factory, stored_password):
        mock_db_service.users.get_by_email.return_value = user_factory(password=stored_password)

        response = client.post("/api/v1/user/login", json={"email": "alice@example.com", "password": "secret12"})

        assert response.status_code == 200
        assert "token" in response.json()
        assert "password" not in response.json()["data"]["user"]
        mock_db_service.users.get_by_email.assert_awaited_once_with("alice@example.com", with_password=True)

    def test_login_wrong_password(self, client, mock_db_service, user_factory, stored_password):
        mock_db_service.users.get_by_email.return_value = user_factory(password=stored_password)

        response = client.post("/api/v1/user/login", json={"email": "alice@example.com", "password": "nope-nope"})

        assert response.status_code == 401
        assert response.json()["message"] == "Incorrect email or password"

    def test_login_unknown_email(self, client, mock_db_service):
        mock_db_service.users.get_by_email.return_value = None

        response = client.post("/api/v1/user/login", json={"email": "ghost@example.com", "password": "secret12"})

        assert response.status_code == 401

    def test_login_requires_both_fields(self, client):
        response = client.post("/api/v1/user/login", json={"email": "alice@example.com"})
        assert response.status_code == 400
        assert response.json()["message"] == "Please provide email and password"


class TestPasswordReset:
    """Test cases for the forgot/reset password flow."""

    def test_forgot_password_sends_token(self, client, mock_db_service, mock_email_sender, sample_user):
        mock_db_service.users.get_by_email.return_value = sample_user

        response = client.post("/api/v1/user/forgot-password", json={"email": sample_user["email"]})

        assert response.status_code == 200
        mock_email_sender.send.assert_awaited_once()
        to_email, subject, text = mock_email_sender.send.call_args.args
        assert to_email == sample_user["email"]
        assert "/api/v1/user/reset-password/" in text

        raw_token = text.split("/reset-password/")[1].split(".")[0]
        mock_db_service.users.set_reset_token.assert_awaited_once_with(
            sample_user["_id"], hash_reset_token(raw_token), ANY
        )
        mock_db_service.users.clear_reset_token.assert_not_called()

    def test_forgot_password_rolls_back_when_email_fails(self, client, mock_db_service,
                                                         mock_email_sender, sample_user):
        mock_db_service.users.get_by_email.return_value = sample_user
        mock_email_sender.send.side_effect = smtplib.SMTPException("relay refused")

        response = client.post("/api/v1/user/forgot-password", json={"email": sample_user["email"]})

        assert response.status_code == 500
        assert response.json()["message"] == "There was an error sending the email. Try again later!"
        mock_db_service.users.clear_reset_token.assert_awaited_once_with(sample_user["_id"])

    def test_forgot_password_unknown_email(self, client, mock_db_service):
        mock_db_service.users.get_by_email.return_value = None

        response = client.post("/api/v1/user/forgot-password", json={"email": "ghost@example.com"})

        assert response.status_code == 404

    def test_reset_password_consumes_token(self, client, mock_db_service, sample_user):
        # The store clears the token on success, so the second lookup misses
        mock_db_service.users.find_by_reset_token.side_effect = [sample_user, None]
        mock_db_service.users.set_password.return_value = sample_user
        body = {"password": "newpass12", "passwordConfirm": "newpass12"}

        first = client.patch("/api/v1/user/reset-password/raw-token", json=body)
        second = client.patch("/api/v1/user/reset-password/raw-token", json=body)

        assert first.status_code == 200
        assert "token" in first.json()
        mock_db_service.users.find_by_reset_token.assert_any_await(hash_reset_token("raw-token"))
        mock_db_service.users.set_password.assert_awaited_once_with(sample_user["_id"], "newpass12")
        assert second.status_code == 400
        assert second.json()["message"] == "Token is invalid or has expired"

    def test_reset_password_mismatch(self, client, mock_db_service, sample_user):
        mock_db_service.users.find_by_reset_token.return_value = sample_user

        response = client.patch(
            "/api/v1/user/reset-password/raw-token",
            json={"password": "newpass12", "passwordConfirm": "other123"},
        )

        assert response.status_code == 400
        mock_db_service.users.set_password.assert_not_called()


class TestUpdateMyPassword:
    """Test cases for POST /updateMyPassword."""

    BODY = {"currentPassword": "secret12", "password": "newpass12", "passwordConfirm": "newpass12"}

    def test_update_password(self, login_as, client, mock_db_service, sample_user, stored_password):
        login_as(sample_user)
        mock_db_service.users.get.return_value = {**sample_user, "password": stored_password}
        mock_db_service.users.set_password.return_value = sample_user

        response = client.post("/api/v1/user/updateMyPassword", json=self.BODY)

        assert response.status_code == 200
        assert "jwt=" in response.headers["set-cookie"]
        mock_db_service.users.set_password.assert_awaited_once_with(sample_user["_id"], "newpass12")

    def test_wrong_current_password(self, login_as, client, mock_db_service, sample_user, stored_password):
        login_as(sample_user)
        mock_db_service.users.get.return_value = {**sample_user, "password": stored_password}

        response = client.post("/api/v1/user/updateMyPassword", json={**self.BODY, "currentPassword": "wrong-one"})

        assert response.status_code == 401
        assert response.json()["message"] == "Your current password is wrong"
        mock_db_service.users.set_password.assert_not_called()

    def test_requires_login(self, client):
        response = client.post("/api/v1/user/updateMyPassword", json=self.BODY)
        assert response.status_code == 401


class TestCurrentUser:
    """Test cases for /me, /updateMe and /deleteMe."""

    def test_get_me(self, login_as, client, sample_user):
        login_as({**sample_user, "password": "$2b$04$hashed"})

        response = client.get("/api/v1/user/me")

        assert response.status_code == 200
        user = response.json()["data"]["user"]
        assert user["id"] == str(sample_user["_id"])
        assert "password" not in user

    def test_update_me_rejects_password(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.patch("/api/v1/user/updateMe", json={"name": "B", "password": "newpass12"})

        assert response.status_code == 400
        mock_db_service.users.update.assert_not_called()

    def test_update_me_only_applies_profile_fields(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)
        mock_db_service.users.update.return_value = {**sample_user, "name": "Bob"}

        response = client.patch("/api/v1/user/updateMe", json={"name": "Bob", "role": "admin"})

        assert response.status_code == 200
        assert response.json()["data"]["user"]["name"] == "Bob"
        mock_db_service.users.update.assert_awaited_once_with(sample_user["_id"], {"name": "Bob"})

    def test_delete_me_is_soft_delete(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.delete("/api/v1/user/deleteMe")

        assert response.status_code == 204
        mock_db_service.users.deactivate.assert_awaited_once_with(sample_user["_id"])
        mock_db_service.users.delete.assert_not_called()


class TestUserAdministration:
    """Test cases for the user collection endpoints."""

    def test_list_users(self, login_as, client, sample_user, mock_db_service, user_factory):
        login_as(sample_user)
        mock_db_service.users.find.return_value = [sample_user, user_factory(name="Bob", email="bob@example.com")]

        response = client.get("/api/v1/user", params={"role": "user", "sort": "name"})

        assert response.status_code == 200
        assert response.json()["results"] == 2
        spec = mock_db_service.users.find.call_args.args[0]
        assert spec.filter == {"role": "user"}
        assert spec.sort == [("name", 1)]

    def test_get_user_not_found(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)
        other_id = ObjectId()

        async def get(user_id, with_password=False):
            return sample_user if str(user_id) == str(sample_user["_id"]) else None

        mock_db_service.users.get.side_effect = get

        response = client.get(f"/api/v1/user/{other_id}")

        assert response.status_code == 404

    def test_update_user_rejects_password(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.patch(f"/api/v1/user/{ObjectId()}", json={"passwordConfirm": "x"})

        assert response.status_code == 400

    def test_delete_user_requires_admin(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.delete(f"/api/v1/user/{ObjectId()}")

        assert response.status_code == 403
        mock_db_service.users.delete.assert_not_called()

    def test_admin_hard_deletes_user(self, login_as, client, admin_user, mock_db_service):
        login_as(admin_user)
        mock_db_service.users.delete.return_value = True
        target = ObjectId()

        response = client.delete(f"/api/v1/user/{target}")

        assert response.status_code == 204
        mock_db_service.users.delete.assert_awaited_once_with(str(target))

    def test_list_users_refuses_credential_filters(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.get(
            "/api/v1/user",
            params={"password[gte]": "$2b$12$A", "passwordResetToken[lt]": "8"},
        )

        assert response.status_code == 400
        mock_db_service.users.find.assert_not_called()

    def test_list_users_refuses_credential_sort(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.get("/api/v1/user", params={"sort": "-password"})

        assert response.status_code == 400
        mock_db_service.users.find.assert_not_called()

    def test_update_user_role_requires_admin(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)

        response = client.patch(f"/api/v1/user/{ObjectId()}", json={"role": "admin"})

        assert response.status_code == 403
        mock_db_service.users.update.assert_not_called()

    def test_update_user_profile_as_user(self, login_as, client, sample_user, mock_db_service):
        login_as(sample_user)
        target = ObjectId()
        mock_db_service.users.update.return_value = {**sample_user, "_id": target, "name": "Bob"}

        response = client.patch(f"/api/v1/user/{target}", json={"name": "Bob"})

        assert response.status_code == 200
        mock_db_service.users.update.assert_awaited_once_with(str(target), {"name": "Bob"})

    def test_admin_may_change_role(self, login_as, client, admin_user, sample_user, mock_db_service):
        login_as(admin_user)
        mock_db_service.users.update.return_value = {**sample_user, "role": "admin"}

        response = client.patch(f"/api/v1/user/{sample_user['_id']}", json={"role": "admin"})

        assert response.status_code == 200
        assert response.json()["data"]["user"]["role"] == "admin"
