from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from core.settings import Settings
from core.storage.local import LocalStorage
from tests.utils_channels import BASE_URL


def _generate_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    return _generate_private_key()


@pytest.fixture(scope="session")
def other_private_key() -> rsa.RSAPrivateKey:
    return _generate_private_key()


@pytest.fixture(scope="session")
def public_key(private_key):
    return private_key.public_key()


@pytest.fixture()
def public_key_pem(tmp_path: Path, public_key) -> Path:
    path = tmp_path / "public.pem"
    path.write_bytes(
        public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return path


@pytest.fixture()
def make_token(private_key) -> Callable[..., str]:
    def _make(*, key=None, expires_in: float = 3600.0, algorithm: str = "RS256", **claims: Any) -> str:
        payload: dict[str, Any] = {"exp": int(time.time() + expires_in), **claims}
        return jwt.encode(payload, key or private_key, algorithm=algorithm)

    return _make


@pytest.fixture()
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "bucket")


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage={"backend": "local", "local_root": tmp_path / "bucket"},
        server={"base_url": BASE_URL, "preload_channels": False},
    )
