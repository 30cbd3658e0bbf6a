"""
Tests for JWT helpers and auth dependencies.
"""
import asyncio
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from jose import jwt


class TestTokens:

    def test_round_trip(self):
        from quote_engine.auth import create_access_token, decode_token

        payload = decode_token(create_access_token("u-1", "broker@mfs.example", role="admin"))

        assert payload["sub"] == "u-1"
        assert payload["role"] == "admin"

    def test_expired_token_rejected(self):
        from quote_engine.auth import ALGORITHM, SECRET_KEY, decode_token

        token = jwt.encode(
            {"sub": "u-1", "exp": datetime.utcnow() - timedelta(minutes=1)}, SECRET_KEY, algorithm=ALGORITHM,
        )

        assert decode_token(token) is None

    def test_garbage_rejected(self):
        from quote_engine.auth import decode_token

        assert decode_token("not-a-token") is None


class TestRequireAdmin:

    def test_non_admin_forbidden(self):
        from quote_engine.auth import require_admin

        user = MagicMock(role="user")

        with pytest.raises(HTTPException) as exc:
            asyncio.run(require_admin(user))
        assert exc.value.status_code == 403

    def test_admin_passes(self):
        from quote_engine.auth import require_admin

        user = MagicMock(role="admin")

        assert asyncio.run(require_admin(user)) is user


class TestGetCurrentUser:

    def test_inactive_user_rejected(self, db, broker):
        from quote_engine.auth import create_access_token, get_current_user

        broker.is_active = False
        db.commit()
        credentials = MagicMock(credentials=create_access_token(broker.id, broker.email))

        with pytest.raises(HTTPException) as exc:
            asyncio.run(get_current_user(credentials, db))
        assert exc.value.status_code == 401

    def test_active_user_loaded(self, db, broker):
        from quote_engine.auth import create_access_token, get_current_user

        credentials = MagicMock(credentials=create_access_token(broker.id, broker.email))

        assert asyncio.run(get_current_user(credentials, db)).id == broker.id
