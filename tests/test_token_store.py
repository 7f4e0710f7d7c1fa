from auth.cookie_jar import MemoryCookieJar
from auth.crypto import TokenCipher
from auth.token_store import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    REFRESH_TOKEN_MAX_AGE_SECONDS,
    TOKEN_EXPIRY_COOKIE,
    TOKEN_TYPE_COOKIE,
    SecureTokenStore,
)
from tests.oauth_helpers import NOW


def test_set_and_get_tokens(store) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)

    assert store.get_access_token() == "access-1"
    assert store.get_refresh_token() == "refresh-1"
    assert store.get_token_expiry() == int(NOW * 1000) + 3600 * 1000
    assert store.get_token_type() == "Bearer"


def test_tokens_are_encrypted_in_cookies(store, jar) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)

    assert "access-1" not in jar.values[ACCESS_TOKEN_COOKIE]
    assert "refresh-1" not in jar.values[REFRESH_TOKEN_COOKIE]
    assert jar.values[ACCESS_TOKEN_COOKIE].count(":") == 2
    assert jar.values[TOKEN_TYPE_COOKIE] == "Bearer"


def test_cookie_lifetimes(store, jar) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)

    assert jar.max_ages[ACCESS_TOKEN_COOKIE] == 3600
    assert jar.max_ages[TOKEN_EXPIRY_COOKIE] == 3600
    assert jar.max_ages[TOKEN_TYPE_COOKIE] == 3600
    assert jar.max_ages[REFRESH_TOKEN_COOKIE] == REFRESH_TOKEN_MAX_AGE_SECONDS


def test_token_valid_outside_buffer(jar, cipher) -> None:
    current = {"now": NOW}
    store = SecureTokenStore(jar, cipher, clock=lambda: current["now"])
    store.set_tokens("access-1", "refresh-1", 3600)

    current["now"] = NOW + 3600 - 6 * 60
    assert store.is_token_valid() is True

    current["now"] = NOW + 3600 - 4 * 60
    assert store.is_token_valid() is False


def test_token_validity_respects_custom_buffer(jar, cipher) -> None:
    current = {"now": NOW}
    store = SecureTokenStore(jar, cipher, clock=lambda: current["now"])
    store.set_tokens("access-1", "refresh-1", 3600)

    current["now"] = NOW + 3600 - 4 * 60

    assert store.is_token_valid(buffer_minutes=0) is True
    assert store.is_token_valid(buffer_minutes=5) is False


def test_token_invalid_without_tokens(store) -> None:
    assert store.is_token_valid() is False
    assert store.get_access_token() is None
    assert store.get_token_expiry() is None


def test_tampered_access_token_reads_as_missing(store, jar) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)
    iv, tag, ciphertext = jar.values[ACCESS_TOKEN_COOKIE].split(":")
    jar.values[ACCESS_TOKEN_COOKIE] = f"{iv}:{'0' * len(tag)}:{ciphertext}"

    assert store.get_access_token() is None
    assert store.is_token_valid() is False
    assert store.get_refresh_token() == "refresh-1"


def test_garbage_cookie_reads_as_missing(jar, cipher) -> None:
    jar.values[REFRESH_TOKEN_COOKIE] = "not-a-record"
    store = SecureTokenStore(jar, cipher)

    assert store.get_refresh_token() is None


def test_tokens_from_another_key_are_rejected(jar, cipher) -> None:
    SecureTokenStore(jar, TokenCipher(bytes(32))).set_tokens("access-1", "refresh-1", 3600)

    store = SecureTokenStore(jar, cipher)

    assert store.get_access_token() is None
    assert store.get_refresh_token() is None


def test_non_numeric_expiry_is_ignored(store, jar) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)
    jar.values[TOKEN_EXPIRY_COOKIE] = "soon"

    assert store.get_token_expiry() is None
    assert store.is_token_valid() is False


def test_update_access_token_keeps_refresh_token(store, jar) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)
    refresh_record = jar.values[REFRESH_TOKEN_COOKIE]

    store.update_access_token("access-2", 1800)

    assert store.get_access_token() == "access-2"
    assert store.get_token_expiry() == int(NOW * 1000) + 1800 * 1000
    assert jar.values[REFRESH_TOKEN_COOKIE] == refresh_record
    assert store.get_refresh_token() == "refresh-1"


def test_clear_tokens(store, jar) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)

    store.clear_tokens()

    assert jar.values == {}
    assert store.get_all_token_data() is None


def test_get_all_token_data(store) -> None:
    store.set_tokens("access-1", "refresh-1", 3600)

    data = store.get_all_token_data()

    assert data is not None
    assert data.access_token == "access-1"
    assert data.refresh_token == "refresh-1"
    assert data.expires_at == int(NOW * 1000) + 3600 * 1000
    assert data.token_type == "Bearer"
    assert data.is_valid is True


def test_get_all_token_data_requires_every_field(jar, cipher) -> None:
    jar.values[ACCESS_TOKEN_COOKIE] = cipher.encrypt("access-1")
    jar.values[TOKEN_EXPIRY_COOKIE] = str(int(NOW * 1000) + 60_000)
    store = SecureTokenStore(jar, cipher, clock=lambda: NOW)

    assert store.get_all_token_data() is None


def test_memory_jar_starts_from_initial_values(cipher) -> None:
    jar = MemoryCookieJar({TOKEN_TYPE_COOKIE: "Bearer"})

    assert SecureTokenStore(jar, cipher).get_token_type() == "Bearer"
