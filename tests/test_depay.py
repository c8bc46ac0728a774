"""
DePay crypto rail: request verification, signed responses, configuration and
callback settlement
"""
import base64
import json
from decimal import Decimal

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from core import config
from models.ownership import Ownership
from models.payments import Payment
from utils import depay

_PSS = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=64)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _pem_private(key) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


def _pem_public(key) -> str:
    return key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture(scope="module")
def depay_key():
    """Key DePay signs its requests with"""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def our_key():
    """Key we sign responses with"""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(autouse=True)
def _depay_config(monkeypatch, depay_key, our_key):
    monkeypatch.setattr(config, "DEPAY_PUBLIC_KEY", _pem_public(depay_key))
    monkeypatch.setattr(config, "DEPAY_PRIVATE_KEY", _pem_private(our_key))
    monkeypatch.setattr(config, "DEPAY_WALLET_ADDRESS", "0x000000000000000000000000000000000000dEaD")


@pytest.fixture
def send(client, depay_key):
    def _send(path, data, sign_with=None):
        body = json.dumps(data).encode("utf-8")
        signature = _b64url((sign_with or depay_key).sign(body, _PSS, hashes.SHA256()))
        return client.post(
            f"/api/webhooks/depay/{path}",
            content=body,
            headers={"content-type": "application/json", "x-signature": signature},
        )
    return _send


def _assert_signed(response, our_key):
    signature = response.headers["x-signature"]
    raw = base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))
    our_key.public_key().verify(raw, response.content, _PSS, hashes.SHA256())


def _callback(tx, collection, tier, email, **payload):
    body = {
        "blockchain": "arbitrum",
        "transaction": tx,
        "sender": "0x1111111111111111111111111111111111111111",
        "receiver": "0x000000000000000000000000000000000000dEaD",
        "token": depay.USDC_ARBITRUM,
        "amount": "10100.0",
        "payload": {
            "type": "OWNERSHIP",
            "collectionId": str(collection.id),
            "pricingTierId": str(tier.id),
            "email": email,
            "userId": "",
            "affiliateCode": "",
        },
    }
    body["payload"].update(payload)
    return body


def test_sign_and_verify_roundtrip(monkeypatch, our_key):
    """Our signature verifies with the matching public key"""
    monkeypatch.setattr(config, "DEPAY_PUBLIC_KEY", _pem_public(our_key))
    signature = depay.sign_response('{"ok":true}')
    assert "=" not in signature
    assert depay.verify_request(signature, b'{"ok":true}')
    assert not depay.verify_request(signature, b'{"ok":false}')


def test_unsigned_callback_is_rejected(client, db, our_key):
    """No x-signature header means a signed 401 and no rows"""
    r = client.post("/api/webhooks/depay/callback", content=b"{}", headers={"content-type": "application/json"})
    assert r.status_code == 401
    _assert_signed(r, our_key)
    assert db.query(Payment).count() == 0


def test_callback_signed_by_wrong_key_is_rejected(send, db, make_collection, make_tier, our_key):
    """A signature from any other key fails verification"""
    collection, _ = make_collection(units=1)
    tier = make_tier(collection)
    r = send("callback", _callback("0xforged", collection, tier, "x@example.com"), sign_with=our_key)
    assert r.status_code == 401
    _assert_signed(r, our_key)
    assert r.json() == {"error": "UNAUTHORIZED"}
    assert db.query(Payment).count() == 0


def test_unsigned_configuration_is_rejected(client, our_key):
    """Configuration requests are verified the same way"""
    r = client.post("/api/webhooks/depay/configuration", content=b"{}", headers={"content-type": "application/json"})
    assert r.status_code == 401
    _assert_signed(r, our_key)


def test_configuration_returns_signed_accept_list(send, make_collection, make_tier, our_key):
    """The widget asks which tokens and amount to accept for a tier"""
    collection, _ = make_collection(units=1)
    tier = make_tier(collection, crypto_price="10100.00")

    r = send("configuration", {"payload": {"collectionId": str(collection.id), "pricingTierId": str(tier.id)}})

    assert r.status_code == 200
    _assert_signed(r, our_key)
    accept = r.json()["accept"]
    assert len(accept) == len(depay.ACCEPTED_TOKENS)
    assert accept[0]["blockchain"] == "arbitrum"
    assert {a["amount"] for a in accept} == {10100.0}
    assert {a["receiver"] for a in accept} == {"0x000000000000000000000000000000000000dEaD"}


def test_configuration_unknown_tier_is_404(send, make_collection):
    """Missing tier is a signed 404"""
    collection, _ = make_collection(units=1)
    r = send("configuration", {"collectionId": str(collection.id), "pricingTierId": "999"})
    assert r.status_code == 404


def test_configuration_tier_from_other_collection_is_400(send, make_collection, make_tier):
    """Tier and collection must match"""
    collection, _ = make_collection(units=1)
    other, _ = make_collection(units=1, name="Villa")
    tier = make_tier(other)
    r = send("configuration", {"collectionId": str(collection.id), "pricingTierId": str(tier.id)})
    assert r.status_code == 400
    assert r.json()["error"] == "Pricing tier does not belong to this collection"


def test_callback_settles_crypto_purchase(send, db, make_collection, make_tier, our_key):
    """Confirmed transaction becomes a CRYPTO ownership priced at the crypto amount"""
    collection, units = make_collection(units=1)
    tier = make_tier(collection, crypto_price="10100.00")

    r = send("callback", _callback("0xtx1", collection, tier, "crypto@example.com"))

    assert r.status_code == 200
    _assert_signed(r, our_key)
    db.expire_all()
    payment = db.query(Payment).filter(Payment.external_id == "0xtx1").one()
    assert payment.provider == "DEPAY"
    assert payment.currency == "USDC"
    assert payment.amount == Decimal("10100.00")
    ownership = db.query(Ownership).filter(Ownership.payment_id == payment.id).one()
    assert ownership.payment_method == "CRYPTO"
    assert ownership.unit_id == units[0].id


def test_callback_replay_is_already_processed(send, db, make_collection, make_tier, our_key):
    """The same transaction hash settles once"""
    collection, _ = make_collection(units=1)
    tier = make_tier(collection)
    body = _callback("0xtx2", collection, tier, "again@example.com")

    assert send("callback", body).status_code == 200
    r = send("callback", body)

    assert r.status_code == 200
    _assert_signed(r, our_key)
    assert r.json() == {"status": "already_processed"}
    db.expire_all()
    assert db.query(Ownership).count() == 1


def test_callback_missing_payload_is_400(send, db):
    """Without collection, tier and email nothing is recorded"""
    r = send("callback", {"transaction": "0xtx3", "payload": {}})
    assert r.status_code == 400
    assert db.query(Payment).count() == 0


def test_booking_callback_is_ignored(send, db, make_collection, make_tier):
    """Booking payments are handled elsewhere"""
    collection, _ = make_collection(units=1)
    tier = make_tier(collection)
    r = send("callback", _callback("0xtx4", collection, tier, "stay@example.com", type="BOOKING"))
    assert r.status_code == 200
    assert r.json() == {"status": "ignored"}
    assert db.query(Payment).count() == 0


def test_tampered_response_fails_verification(our_key):
    """A modified body no longer matches our signature"""
    body, headers = depay.signed_body({"status": "ok"})
    raw = base64.urlsafe_b64decode(headers["x-signature"] + "=" * (-len(headers["x-signature"]) % 4))
    with pytest.raises(InvalidSignature):
        our_key.public_key().verify(raw, body.replace("ok", "ko").encode("utf-8"), _PSS, hashes.SHA256())
