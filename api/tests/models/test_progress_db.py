from sync_api.models import db


def test_base_as_dict_skips_primary_key():
    progress = db.ReadingProgress(id=7, user_id="u", book_id="b", cfi="c", percentage=0.5, device_id="d",
                                  updated_at=1, server_synced_at=2, sync_version=1)
    as_dict = progress.as_dict()
    assert "id" not in as_dict
    assert as_dict["user_id"] == "u"
    assert as_dict["server_synced_at"] == 2


def test_access_token_as_dict_has_no_token_hash():
    token = db.AccessToken(token_hash="abc", user_id="u")
    assert token.as_dict() == {"user_id": "u", "created_at": None}
