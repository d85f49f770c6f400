import base64

import pytest

from licensing import connect_codec
from licensing.exceptions import ValidationError

SECRET = "test-secret-key"


def test_xor_encrypt_single_byte():
    # 'A' ^ 'B' == 0x03
    assert connect_codec.encrypt("A", "B") == "Aw=="
    assert connect_codec.decrypt("Aw==", "B") == "A"


def test_signature_known_value():
    # djb2("|0|") == 0x0b88c90d
    assert connect_codec.signature("", 0, "") == "000000000b88c90d"


def test_signature_is_sixteen_hex_chars():
    sig = connect_codec.signature('{"key":"ABC"}', 1700000000000, SECRET)
    assert len(sig) == 16
    int(sig, 16)


def test_canonical_json_sorts_keys_without_spaces():
    assert connect_codec.canonical_json({"b": 1, "a": None}) == '{"a":null,"b":1}'


def test_decode_request_returns_key_and_uuid():
    encrypted = connect_codec.encode_request("KEY123", "device-uuid", SECRET)
    assert connect_codec.decode_request(encrypted, SECRET) == ("KEY123", "device-uuid")


def test_decode_request_rejects_missing_uuid():
    inner = base64.b64encode(b"KEYONLY").decode("ascii")
    encrypted = connect_codec.encrypt(inner, SECRET)
    with pytest.raises(ValidationError) as exc:
        connect_codec.decode_request(encrypted, SECRET)
    assert exc.value.reason == "Invalid key format"


def test_decode_request_rejects_garbage():
    with pytest.raises(ValidationError):
        connect_codec.decode_request("not base64 at all!!", SECRET)


def test_response_signature_verifies():
    data = {"key": "KEY123", "devices_left": 0, "serverfile": None}
    encrypted = connect_codec.encode_response(data, SECRET, timestamp=1700000000000)
    payload = connect_codec.decode_response(encrypted, SECRET)
    assert payload["data"] == data
    assert payload["dataString"] == connect_codec.canonical_json(data)
    assert payload["timestamp"] == 1700000000000


def test_tampered_response_fails_verification():
    encrypted = connect_codec.encode_response({"key": "K"}, SECRET, timestamp=1)
    plain = connect_codec.decrypt(encrypted, SECRET)
    tampered = connect_codec.encrypt(plain.replace('"timestamp":1}', '"timestamp":2}'), SECRET)
    with pytest.raises(ValidationError):
        connect_codec.decode_response(tampered, SECRET)
