import os

# configure the app for tests before anything imports content_api
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test_secret_for_pytest_only")
os.environ.setdefault("POSTMARK_BASICAUTH_USER", "postmark")
os.environ.setdefault("POSTMARK_BASICAUTH_PASSWORD", "postmark-secret")
os.environ.setdefault("CACHE_EXPIRATION_MINUTES", "1")
os.environ.setdefault("CDN_UPLOADS_FOLDER", "uploads")
os.environ.setdefault("CDN_PUBLIC_URL", "https://cdn.example.com")

import pytest
from sqlmodel import Session, SQLModel

from content_api import main
from content_api.auth import create_access_token, hash_password
from content_api.config import get_settings
from content_api.credentials import credentials_for_role
from content_api.database import engine
from content_api.models import User, UserStatus
from content_api.utils.object_store import ObjectStore, get_object_store


class FakeS3Client:
    """Just enough of the boto3 S3 client for `ObjectStore`."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = {"Body": Body, "ContentType": ContentType}
        return {"ETag": '"d41d8cd98f00b204e9800998ecf8427e"', "VersionId": "v1"}

    def delete_object(self, **kwargs):
        self.deleted.append(kwargs)
        self.objects.pop(kwargs["Key"], None)
        return {}

    def list_objects_v2(self, Bucket, Prefix, **kwargs):
        contents = [
            {"Key": key, "ETag": '"etag"', "Size": len(obj["Body"])}
            for key, obj in sorted(self.objects.items())
            if key.startswith(Prefix)
        ]
        return {"Contents": contents, "IsTruncated": False}


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh tables and an empty response cache for every test."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    main._response_cache.clear()
    yield
    main.app.dependency_overrides.clear()


@pytest.fixture
def s3_client():
    client = FakeS3Client()
    settings = get_settings()
    store = ObjectStore(client, settings.CDN_BUCKET_NAME, settings.CDN_UPLOADS_FOLDER, settings.CDN_PUBLIC_URL)
    main.app.dependency_overrides[get_object_store] = lambda: store
    return client


@pytest.fixture
def make_user():
    def _make(username="alice", role="user", password="password123", status=UserStatus.ACTIVE):
        with Session(engine) as session:
            user = User(
                email=f"{username}@gmail.com",
                username=username,
                password_hash=hash_password(password),
                user_status=int(status),
                user_role=role,
                user_attrs={"first_name": username.title(), "last_name": "", "picture": "", "about": ""},
                user_settings={"email_subscriptions": {"transactional": True, "marketing": True}},
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
    return _make


@pytest.fixture
def auth_headers():
    """Build a bearer header for `user_id`; pass `credentials` to override the role set."""
    def _headers(user_id, role="user", credentials=None, expires_delta=None):
        creds = credentials_for_role(role) if credentials is None else credentials
        token, _ = create_access_token(user_id, creds, get_settings(), expires_delta)
        return {"Authorization": f"Bearer {token}"}
    return _headers
