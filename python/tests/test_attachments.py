"""Tests for the attachment upload service."""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from onechat.errors import ApiError, ForbiddenError, NotFoundError
from onechat.services.attachments import (
    attachment_type_for,
    confirm_upload,
    create_upload,
    delete_attachment,
    get_attachment_for_owner,
    get_attachment_stats,
)
from onechat.storage import StorageError, build_attachment_path
from tests.factories import create_test_attachment, create_test_message, create_test_thread

NO_PDF_MODEL = "openrouter:meta-llama/llama-4-scout:free"


# =============================================================================
# create_upload
# =============================================================================


class TestCreateUpload:
    def test_signs_path_under_owner(self, db_session, storage, test_user_id):
        out = create_upload(db_session, storage, test_user_id, "My Report.pdf", "application/pdf", 2048)

        assert out.storage_path == f"{test_user_id}/attachments/{out.attachment_id}/My_Report.pdf"
        assert out.token.startswith("fake-token-")
        assert out.expires_at > datetime.now(UTC)

    def test_rejects_disallowed_type(self, db_session, storage, test_user_id):
        with pytest.raises(ApiError) as exc:
            create_upload(db_session, storage, test_user_id, "a.zip", "application/zip", 10)
        assert exc.value.code == "unsupported_file_type:files"

    def test_rejects_oversized_file(self, db_session, storage, test_user_id):
        with pytest.raises(ApiError) as exc:
            create_upload(
                db_session, storage, test_user_id, "big.png", "image/png", 8 * 1024 * 1024 + 1
            )
        assert exc.value.code == "file_too_large:files"

    def test_model_must_accept_type(self, db_session, storage, test_user_id):
        with pytest.raises(ApiError) as exc:
            create_upload(
                db_session,
                storage,
                test_user_id,
                "doc.pdf",
                "application/pdf",
                100,
                model_key=NO_PDF_MODEL,
            )
        assert exc.value.code == "unsupported_file_type:files"
        assert "doc.pdf" in exc.value.cause

    def test_markdown_checked_as_plain_text(self, db_session, storage, test_user_id):
        out = create_upload(
            db_session,
            storage,
            test_user_id,
            "notes.md",
            "text/markdown",
            100,
            model_key=NO_PDF_MODEL,
        )
        assert out.storage_path.endswith("/notes.md")

    def test_sign_failure_maps_to_upload_failed(self, db_session, test_user_id):
        broken = MagicMock()
        broken.sign_upload.side_effect = StorageError("boom", code="sign_upload_failed")

        with pytest.raises(ApiError) as exc:
            create_upload(db_session, broken, test_user_id, "a.png", "image/png", 10)
        assert exc.value.code == "upload_failed:files"


# =============================================================================
# confirm_upload
# =============================================================================


class TestConfirmUpload:
    def _upload(self, db_session, storage, user_id, file_name="photo.png", data=b"\x89PNG..."):
        out = create_upload(db_session, storage, user_id, file_name, "image/png", len(data))
        storage.put_object(out.storage_path, data, content_type="image/png")
        return out

    def test_missing_object_fails(self, db_session, storage, test_user_id):
        out = create_upload(db_session, storage, test_user_id, "photo.png", "image/png", 10)

        with pytest.raises(ApiError) as exc:
            confirm_upload(db_session, storage, test_user_id, out.attachment_id, "photo.png", "image/png")
        assert exc.value.code == "upload_failed:files"

    def test_creates_row_from_storage_metadata(self, db_session, storage, test_user_id):
        out = self._upload(db_session, storage, test_user_id, data=b"12345")

        attachment = confirm_upload(
            db_session, storage, test_user_id, out.attachment_id, "photo.png", "image/png"
        )

        assert attachment.id == out.attachment_id
        assert attachment.file_size == 5
        assert attachment.attachment_type == "image"
        assert attachment.attachment_url == f"https://fake-storage.test/public/{out.storage_path}"

    def test_is_idempotent(self, db_session, storage, test_user_id):
        out = self._upload(db_session, storage, test_user_id)

        first = confirm_upload(db_session, storage, test_user_id, out.attachment_id, "photo.png", "image/png")
        second = confirm_upload(db_session, storage, test_user_id, out.attachment_id, "photo.png", "image/png")

        assert first.id == second.id
        assert get_attachment_stats(db_session, test_user_id).total_files == 1

    def test_other_users_id_is_forbidden(self, db_session, storage, test_user_id):
        out = self._upload(db_session, storage, test_user_id)
        confirm_upload(db_session, storage, test_user_id, out.attachment_id, "photo.png", "image/png")

        with pytest.raises(ForbiddenError) as exc:
            confirm_upload(db_session, storage, "someone-else", out.attachment_id, "photo.png", "image/png")
        assert exc.value.code == "forbidden:attachment"

    def test_rejects_disallowed_type(self, db_session, storage, test_user_id):
        with pytest.raises(ApiError) as exc:
            confirm_upload(db_session, storage, test_user_id, "att-1", "a.exe", "application/x-msdownload")
        assert exc.value.code == "unsupported_file_type:files"


# =============================================================================
# Ownership, delete and stats
# =============================================================================


class TestOwnership:
    def test_unknown_is_not_found(self, db_session, test_user_id):
        with pytest.raises(NotFoundError):
            get_attachment_for_owner(db_session, test_user_id, "nope")

    def test_other_owner_is_forbidden(self, db_session, test_user_id):
        attachment = create_test_attachment(db_session, "someone-else")
        with pytest.raises(ForbiddenError):
            get_attachment_for_owner(db_session, test_user_id, attachment.id)


class TestDeleteAttachment:
    def test_removes_row_object_and_cached_threads(
        self, db_session, storage, thread_cache, test_user_id
    ):
        thread = create_test_thread(db_session, test_user_id)
        message = create_test_message(db_session, thread.id)
        attachment = create_test_attachment(db_session, test_user_id, message_id=message.id)
        storage.put_object(attachment.file_key, b"img", content_type="image/png")
        thread_cache.prime_thread(thread.id, {"thread": {"id": thread.id}})

        delete_attachment(db_session, thread_cache, storage, test_user_id, attachment.id)

        with pytest.raises(NotFoundError):
            get_attachment_for_owner(db_session, test_user_id, attachment.id)
        assert storage.get_object(attachment.file_key) is None
        assert storage.deleted == [attachment.file_key]
        assert thread_cache.get_thread(thread.id) is None

    def test_requires_owner(self, db_session, storage, thread_cache, test_user_id):
        attachment = create_test_attachment(db_session, "someone-else")

        with pytest.raises(ForbiddenError):
            delete_attachment(db_session, thread_cache, storage, test_user_id, attachment.id)
        assert storage.deleted == []


class TestStats:
    def test_counts_images_and_files(self, db_session, test_user_id):
        create_test_attachment(db_session, test_user_id, file_size=100)
        create_test_attachment(
            db_session, test_user_id, file_size=50, attachment_type="generated-image"
        )
        create_test_attachment(
            db_session,
            test_user_id,
            file_name="a.pdf",
            mime_type="application/pdf",
            file_size=25,
            attachment_type="file",
        )
        create_test_attachment(db_session, "someone-else", file_size=999)

        stats = get_attachment_stats(db_session, test_user_id)

        assert stats.total_files == 3
        assert stats.total_size == 175
        assert stats.image_count == 2
        assert stats.file_count == 1

    def test_empty(self, db_session, test_user_id):
        stats = get_attachment_stats(db_session, test_user_id)
        assert (stats.total_files, stats.total_size, stats.image_count, stats.file_count) == (
            0,
            0,
            0,
            0,
        )


@pytest.mark.parametrize(
    "content_type,expected",
    [("image/png", "image"), ("image/jpg", "image"), ("application/pdf", "file"), ("text/plain", "file")],
)
def test_attachment_type_for(content_type, expected):
    assert attachment_type_for(content_type) == expected


def test_confirm_path_matches_signed_path(db_session, storage, test_user_id):
    out = create_upload(db_session, storage, test_user_id, "a b.png", "image/png", 3)
    assert out.storage_path == build_attachment_path(test_user_id, out.attachment_id, "a b.png")
