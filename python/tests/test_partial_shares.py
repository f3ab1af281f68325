"""Tests for token-addressed partial shares."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from onechat.errors import ApiError, ForbiddenError, NotFoundError
from onechat.services.partial_shares import (
    PARTIAL_SHARE_TTL_S,
    TOKEN_LENGTH,
    create_partial_share,
    delete_partial_share,
    get_partial_share,
    get_partial_thread_data,
    list_user_partial_shares,
    new_share_token,
    partial_share_key,
    user_partial_shares_key,
)
from tests.factories import create_conversation


@pytest.fixture
def conversation(db_session, test_user_id):
    return create_conversation(db_session, test_user_id, turns=2, thread_id="t1")


class TestCreatePartialShare:
    def test_token_shape(self):
        token = new_share_token()
        assert len(token) == TOKEN_LENGTH
        assert token != new_share_token()

    def test_stores_record_and_index(
        self, db_session, thread_cache, fake_redis, test_user_id, conversation
    ):
        _, messages = conversation

        share = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[1].id
        )

        assert fake_redis.ttl(partial_share_key(share.token)) == PARTIAL_SHARE_TTL_S
        assert fake_redis.smembers(user_partial_shares_key(test_user_id)) == {share.token}
        assert fake_redis.ttl(user_partial_shares_key(test_user_id)) == PARTIAL_SHARE_TTL_S
        assert share.expires_at - share.created_at == timedelta(seconds=PARTIAL_SHARE_TTL_S)

    def test_not_owner(self, db_session, thread_cache, fake_redis, conversation):
        _, messages = conversation

        with pytest.raises(NotFoundError):
            create_partial_share(db_session, thread_cache, fake_redis, "stranger", "t1", messages[0].id)

    def test_message_from_other_thread(
        self, db_session, thread_cache, fake_redis, test_user_id, conversation
    ):
        _, other = create_conversation(db_session, test_user_id, turns=1)

        with pytest.raises(NotFoundError):
            create_partial_share(db_session, thread_cache, fake_redis, test_user_id, "t1", other[0].id)

    def test_requires_redis(self, db_session, thread_cache, test_user_id, conversation):
        _, messages = conversation

        with pytest.raises(ApiError) as exc:
            create_partial_share(db_session, thread_cache, None, test_user_id, "t1", messages[0].id)
        assert exc.value.code == "internal_server_error:api"


class TestReadPartialShare:
    def test_prefix_view(self, db_session, thread_cache, fake_redis, test_user_id, conversation):
        _, messages = conversation
        share = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[1].id
        )

        data = get_partial_thread_data(db_session, thread_cache, fake_redis, share.token)

        assert [m.id for m in data.messages] == [messages[0].id, messages[1].id]
        assert data.thread.id == share.token
        assert data.thread.title == "Test Thread (Partial)"
        assert data.thread.visibility == "public"
        assert data.original_thread_id == "t1"
        assert data.cutoff_message_id == messages[1].id

    def test_read_without_redis(
        self, db_session, thread_cache, fake_redis, test_user_id
    ):
        _, messages = create_conversation(db_session, test_user_id, turns=1, thread_id="t2")
        share = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t2", messages[0].id
        )

        assert get_partial_thread_data(db_session, thread_cache, None, share.token) is None
        assert get_partial_thread_data(db_session, thread_cache, fake_redis, share.token)

    def test_unknown_token(self, db_session, thread_cache, fake_redis):
        assert get_partial_thread_data(db_session, thread_cache, fake_redis, "nope") is None

    def test_expired_record_deleted_on_read(
        self, db_session, thread_cache, fake_redis, test_user_id, conversation
    ):
        _, messages = conversation
        share = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[0].id
        )

        later = share.expires_at + timedelta(seconds=1)
        assert get_partial_share(fake_redis, share.token, now=later) is None
        assert not fake_redis.exists(partial_share_key(share.token))

    def test_read_failure_reported_missing(self):
        client = MagicMock()
        client.get.side_effect = redis.RedisError("down")

        assert get_partial_share(client, "tok") is None

    def test_corrupt_record_reported_missing(self, fake_redis):
        fake_redis.set(partial_share_key("tok"), "{not json")

        assert get_partial_share(fake_redis, "tok") is None


class TestManagePartialShares:
    def test_list_newest_first_and_prunes(
        self, db_session, thread_cache, fake_redis, test_user_id, conversation
    ):
        _, messages = conversation
        first = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[0].id
        )
        second = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[2].id
        )
        fake_redis.sadd(user_partial_shares_key(test_user_id), "gone")

        shares = list_user_partial_shares(fake_redis, test_user_id)

        assert {s.token for s in shares} == {first.token, second.token}
        assert shares[0].created_at >= shares[1].created_at
        assert "gone" not in fake_redis.smembers(user_partial_shares_key(test_user_id))

    def test_delete(self, db_session, thread_cache, fake_redis, test_user_id, conversation):
        _, messages = conversation
        share = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[0].id
        )

        assert delete_partial_share(fake_redis, test_user_id, share.token) is True
        assert delete_partial_share(fake_redis, test_user_id, share.token) is False
        assert list_user_partial_shares(fake_redis, test_user_id) == []

    def test_delete_other_users_share(
        self, db_session, thread_cache, fake_redis, test_user_id, conversation
    ):
        _, messages = conversation
        share = create_partial_share(
            db_session, thread_cache, fake_redis, test_user_id, "t1", messages[0].id
        )

        with pytest.raises(ForbiddenError):
            delete_partial_share(fake_redis, "stranger", share.token)
        assert fake_redis.exists(partial_share_key(share.token))
