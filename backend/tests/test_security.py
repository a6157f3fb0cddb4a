"""
LMS Assessment Engine - Token Verification Tests
"""
import uuid
from datetime import timedelta

from jose import jwt

from lms_assessment.core.config import settings
from lms_assessment.core.security import create_access_token, verify_token


def test_valid_token_yields_subject():
    user_id = uuid.uuid4()
    assert verify_token(create_access_token(user_id)) == str(user_id)


def test_expired_token_is_rejected():
    token = create_access_token(uuid.uuid4(), expires_delta=timedelta(minutes=-1))
    assert verify_token(token) is None


def test_wrong_token_type_is_rejected():
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "type": "refresh"},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    assert verify_token(token) is None


def test_foreign_signature_is_rejected():
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "type": "access"},
        "someone-elses-key",
        algorithm=settings.ALGORITHM,
    )
    assert verify_token(token) is None
