import pytest

from auth.cookie_jar import MemoryCookieJar
from auth.crypto import TokenCipher
from auth.token_store import SecureTokenStore
from tests.oauth_helpers import NOW, TEST_KEY


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_KEY)


@pytest.fixture
def jar() -> MemoryCookieJar:
    return MemoryCookieJar()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store(jar, cipher, clock) -> SecureTokenStore:
    return SecureTokenStore(jar, cipher, clock=clock)
