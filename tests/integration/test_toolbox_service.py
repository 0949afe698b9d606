"""Integration tests for the toolbox HTTP API."""

from types import SimpleNamespace

import dns.resolver
import pytest
from fastapi.testclient import TestClient

from cert_toolkit.verification import _system_trust_store
from cert_toolkit.x509_utils import X509Utils
from toolbox_service import network_probe
from toolbox_service.main import app
from toolbox_service.network_probe import PeerHandshake

from ..utils.test_helpers import TestCertificateFactory, make_jwt

PUBLIC_IP = "93.184.216.34"


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def stub_network(monkeypatch, chain_setup):
    """Resolve every host to a public address and serve the test chain."""
    async def fake_resolve(hostname, resolver=None):
        return PUBLIC_IP

    async def fake_fetch(ip_address, port, hostname):
        return PeerHandshake(
            certificates=chain_setup.presented,
            protocol="TLSv1.2",
            cipher={"name": "ECDHE-RSA-AES128-GCM-SHA256", "version": "TLSv1.2", "bits": 128},
        )

    monkeypatch.setattr(network_probe, "resolve_hostname", fake_resolve)
    monkeypatch.setattr(network_probe, "fetch_peer_certificates", fake_fetch)


class TestServiceEndpoints:
    """Test service metadata endpoints and response headers."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "UP"
        assert body["service"] == "Certificate & Network Toolbox"

    def test_root(self, client):
        assert client.get("/").json()["status"] == "operational"

    def test_security_headers(self, client):
        headers = client.get("/health").headers

        assert headers["X-Content-Type-Options"] == "nosniff"
        assert headers["X-Frame-Options"] == "DENY"
        assert "Cache-Control" not in headers

    def test_api_responses_not_cached(self, client):
        response = client.post("/api/base64/encode", json={"text": "hi"})
        assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"

    def test_unknown_route(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

    def test_malformed_json(self, client):
        response = client.post(
            "/api/decode-jwt",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    def test_oversized_body(self, client):
        response = client.post("/api/base64/encode", json={"text": "a" * 150_000})
        assert response.status_code == 413
        assert response.json()["error"] == "Request entity too large"

    def test_oversized_chunked_body(self, client):
        chunks = (b"a" * 10_000 for _ in range(15))
        response = client.post(
            "/api/base64/encode",
            content=chunks,
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 413
        assert response.json()["error"] == "Request entity too large"

    def test_small_chunked_body_reaches_endpoint(self, client):
        chunks = iter([b'{"text": ', b'"hello"}'])
        response = client.post(
            "/api/base64/encode",
            content=chunks,
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json()["output"] == "aGVsbG8="

    def test_trust_store_loaded_at_startup(self):
        _system_trust_store.cache_clear()
        with TestClient(app) as started:
            assert started.get("/health").status_code == 200
            assert _system_trust_store.cache_info().currsize == 1

    def test_unexpected_failure_is_500(self, client, monkeypatch, chain_setup):
        def explode(text, now=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(X509Utils, "decode_certificate_bundle", explode)
        response = client.post("/api/decode-certificate", json={"certificate": chain_setup.bundle_pem()})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to decode certificate", "details": "boom"}


class TestCertificateEndpoints:
    """Test certificate, CSR and key matching endpoints."""

    def test_decode_certificate_chain(self, client, chain_setup):
        response = client.post("/api/decode-certificate", json={"certificate": chain_setup.bundle_pem()})

        assert response.status_code == 200
        body = response.json()
        assert body["certificatesFound"] == 3
        assert body["isChain"] is True
        leaf = body["certificates"][0]
        assert leaf["status"] == "decoded"
        assert leaf["certLevel"] == "End Entity"
        assert leaf["subject"]["CN"] == "www.example.com"
        assert leaf["publicKeyInfo"]["size"] == "2048 bits"
        assert leaf["subjectAltNames"] == ["www.example.com", "example.com", "*.api.example.com"]
        assert body["certificates"][2]["certLevel"] == "Root CA"
        assert body["decodedAt"].endswith("Z")

    def test_decode_certificate_partial_failure(self, client, chain_setup):
        bundle = "\n".join([
            TestCertificateFactory.to_pem(chain_setup.leaf_cert),
            "-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----",
        ])
        response = client.post("/api/decode-certificate", json={"certificate": bundle})

        assert response.status_code == 200
        failed = response.json()["certificates"][1]
        assert failed["status"] == "failed"
        assert failed["position"] == 2
        assert failed["certLevel"] == "Invalid Certificate"
        assert failed["error"].startswith("Failed to parse certificate 2")

    def test_decode_certificate_duplicate_extension(self, client, chain_setup):
        bundle = "\n".join([
            TestCertificateFactory.to_pem(chain_setup.root_cert),
            TestCertificateFactory.create_certificate_with_duplicate_extension(
                chain_setup.root_cert, chain_setup.root_key
            ),
        ])
        response = client.post("/api/decode-certificate", json={"certificate": bundle})

        assert response.status_code == 200
        certificates = response.json()["certificates"]
        assert certificates[0]["status"] == "decoded"
        assert certificates[1]["status"] == "failed"
        assert certificates[1]["certLevel"] == "Invalid Certificate"

    def test_decode_certificate_missing(self, client):
        response = client.post("/api/decode-certificate", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Certificate is required"}

    def test_decode_csr(self, client):
        csr = TestCertificateFactory.create_csr("csr.example.com", san_dns=["csr.example.com", "alt.example.com"])
        response = client.post("/api/decode-csr", json={"csr": TestCertificateFactory.to_pem(csr)})

        assert response.status_code == 200
        body = response.json()
        assert body["commonName"] == "csr.example.com"
        assert body["subject"] == "C=US, O=TestOrg, CN=csr.example.com"
        assert body["subjectComponents"]["O"] == "TestOrg"
        assert body["subjectAltNames"] == ["csr.example.com", "alt.example.com"]
        assert body["accuracy"] == "High"
        assert body["keySize"] == "2048 bits"
        assert body["publicKeyAlgorithm"] == "RSA"
        assert body["signatureValid"] is True
        assert body["rawPEM"].startswith("-----BEGIN CERTIFICATE REQUEST-----")
        assert "openssl req" in body["recommendation"]

    def test_decode_csr_rejects_certificate(self, client, chain_setup):
        response = client.post("/api/decode-csr", json={"csr": chain_setup.bundle_pem()})
        assert response.status_code == 400
        assert "CERTIFICATE REQUEST" in response.json()["error"]

    def test_match_cert_key(self, client, chain_setup):
        response = client.post("/api/match-cert-key", json={
            "certificate": TestCertificateFactory.to_pem(chain_setup.leaf_cert),
            "privateKey": TestCertificateFactory.key_to_pem(chain_setup.leaf_key),
        })

        assert response.status_code == 200
        body = response.json()
        assert body["matches"] is True
        assert body["privateKey"]["size"] == "2048 bits"
        assert body["compatibility"]["keyType"] == "rsa"
        assert body["certificate"]["daysUntilExpiration"] == 365

    def test_match_cert_key_mismatch(self, client, chain_setup):
        response = client.post("/api/match-cert-key", json={
            "certificate": TestCertificateFactory.to_pem(chain_setup.root_cert),
            "privateKey": TestCertificateFactory.key_to_pem(chain_setup.leaf_key),
        })
        assert response.status_code == 200
        assert response.json()["matches"] is False

    def test_match_cert_key_missing_key(self, client, chain_setup):
        response = client.post("/api/match-cert-key", json={
            "certificate": TestCertificateFactory.to_pem(chain_setup.leaf_cert),
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Both certificate and private key are required"


class TestNetworkEndpoints:
    """Test SSL check, port scan and DNS lookup with the network stubbed."""

    def test_check_ssl(self, client, stub_network):
        response = client.post("/api/check-ssl", json={"url": "https://www.example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["hostname"] == "www.example.com"
        assert body["ipAddress"] == PUBLIC_IP
        assert body["port"] == 443
        assert body["domainMatch"] is True
        assert body["domainMatchInfo"]["matchedWith"] == "www.example.com"
        assert body["authorized"] is False
        assert body["authorizationError"]
        assert body["chainLength"] == 3
        assert body["certificate"]["protocol"] == "TLSv1.2"
        assert body["certificate"]["subjectaltname"][0] == "www.example.com"
        assert len(body["certificateChain"]) == 3

    def test_check_ssl_connection_refused(self, client, monkeypatch):
        async def fake_resolve(hostname, resolver=None):
            return PUBLIC_IP

        async def refuse(ip_address, port, hostname):
            raise ConnectionRefusedError()

        monkeypatch.setattr(network_probe, "resolve_hostname", fake_resolve)
        monkeypatch.setattr(network_probe, "fetch_peer_certificates", refuse)
        response = client.post("/api/check-ssl", json={"url": "www.example.com", "port": 8443})

        assert response.status_code == 500
        assert response.json()["code"] == "ECONNREFUSED"
        assert response.json()["error"] == "Connection refused"

    def test_scan_port(self, client, monkeypatch, stub_network):
        async def fake_probe(ip_address, port, timeout):
            return False, None, "ECONNREFUSED"

        monkeypatch.setattr(network_probe, "probe_port", fake_probe)
        response = client.post("/api/scan-port", json={"host": "example.com", "port": "3306"})

        assert response.status_code == 200
        body = response.json()
        assert body["isOpen"] is False
        assert body["serviceName"] == "MySQL"
        assert body["errorType"] == "ECONNREFUSED"

    def test_dns_lookup(self, client, monkeypatch, fake_resolver_factory, example_dns_answers):
        resolver = fake_resolver_factory(
            answers=example_dns_answers,
            failures={"CNAME": dns.resolver.NoAnswer()},
        )
        monkeypatch.setattr(network_probe, "make_resolver", lambda: resolver)
        response = client.post("/api/dns-lookup", json={"domain": "example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        results = body["results"]
        assert results["records"]["A"] == [PUBLIC_IP]
        assert results["records"]["MX"][0] == {"exchange": "mail.example.com", "priority": 10}
        assert results["records"]["CNAME"]["error"] == "ENODATA"
        assert results["records"]["SOA"]["hostmaster"] == "noc.dns.icann.org"
        assert results["summary"]["hasIPv4"] is True
        assert results["summary"]["hasMail"] is True
        assert results["ipAddress"] == PUBLIC_IP

    def test_dns_lookup_missing_domain(self, client):
        response = client.post("/api/dns-lookup", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Domain is required"


class TestConverterEndpoints:
    """Test JWT, epoch and Base64 endpoints."""

    def test_decode_jwt(self, client):
        token = make_jwt({"alg": "RS256", "typ": "JWT", "kid": "k1"}, {"sub": "42", "tenant": "acme"})
        response = client.post("/api/decode-jwt", json={"token": token})

        assert response.status_code == 200
        body = response.json()
        assert body["header"]["kid"] == "k1"
        assert body["payload"]["customClaims"] == [{"key": "tenant", "value": "acme"}]
        assert body["security"]["algorithmAssessment"] == "Secure (RSA with SHA)"
        assert body["security"]["expirationStatus"] == "No expiration set"
        assert body["isExpired"] is False

    def test_decode_jwt_malformed(self, client):
        response = client.post("/api/decode-jwt", json={"token": "only.two"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JWT format"

    def test_decode_jwt_numeric_kid(self, client):
        token = make_jwt({"alg": "HS256", "typ": "JWT", "kid": 7}, {"sub": "x"})
        response = client.post("/api/decode-jwt", json={"token": token})

        assert response.status_code == 200
        assert response.json()["header"]["kid"] == "7"

    def test_epoch_to_human(self, client):
        response = client.post("/api/epoch/to-human", json={"timestamp": "1700000000", "timezone": "utc"})

        assert response.status_code == 200
        body = response.json()
        assert body["isoTime"] == "2023-11-14T22:13:20.000Z"
        assert body["jsTimestamp"] == 1700000000000
        assert body["format"] == "Unix Timestamp (seconds)"
        assert "warning" not in body or body["warning"] is None

    def test_epoch_to_human_numeric_input(self, client):
        response = client.post("/api/epoch/to-human", json={"timestamp": 1700000000123, "timezone": "utc"})
        assert response.json()["unixTimestamp"] == 1700000000

    def test_epoch_to_human_rejects_letters(self, client):
        response = client.post("/api/epoch/to-human", json={"timestamp": "12ab"})
        assert response.status_code == 400

    def test_epoch_from_human(self, client):
        response = client.post("/api/epoch/from-human", json={
            "date": "2023-11-14",
            "time": "22:13:20",
            "timezone": "utc",
        })

        assert response.status_code == 200
        assert response.json()["unixTimestamp"] == 1700000000

    def test_base64_round_trip(self, client):
        encoded = client.post("/api/base64/encode", json={"text": "Hello, World!"}).json()
        assert encoded["output"] == "SGVsbG8sIFdvcmxkIQ=="
        assert encoded["encodingType"] == "Standard Base64 (UTF-8)"

        decoded = client.post("/api/base64/decode", json={"data": encoded["output"]}).json()
        assert decoded["output"] == "Hello, World!"

    def test_base64_url_safe_flag(self, client):
        response = client.post("/api/base64/encode", json={"text": "??>", "urlSafe": True})
        assert response.json()["output"] == "Pz8-"

    def test_base64_encode_requires_text(self, client):
        response = client.post("/api/base64/encode", json={"text": ""})
        assert response.status_code == 400
        assert response.json()["error"] == "Text is required"

    def test_base64_decode_invalid(self, client):
        response = client.post("/api/base64/decode", json={"data": "abc$"})
        assert response.status_code == 400
        assert response.json()["error"] == "Contains invalid Base64 characters"
