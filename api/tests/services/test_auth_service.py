from sync_api.models import db


def test_issued_token_resolves_to_user(auth_service):
    token = auth_service.issue_token("user-1")
    assert auth_service.user_for_token(token) == "user-1"
    assert auth_service.user_for_token(token + "x") is None


def test_tokens_are_stored_hashed(auth_service):
    token = auth_service.issue_token("user-1")
    with auth_service.session_factory() as session:
        stored = session.query(db.AccessToken).one()
    assert stored.token_hash != token
    assert len(stored.token_hash) == 64
