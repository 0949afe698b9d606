"""Pytest configuration and shared fixtures for toolbox testing."""

import pytest
from datetime import datetime, timezone
from types import SimpleNamespace

import dns.name
import dns.resolver

from .utils.test_helpers import MockChainSetup


@pytest.fixture(scope="session")
def chain_setup() -> MockChainSetup:
    """A root -> intermediate -> leaf chain for www.example.com."""
    return MockChainSetup(
        leaf_name="www.example.com",
        san_dns=["www.example.com", "example.com", "*.api.example.com"],
    )


@pytest.fixture
def mock_timestamp():
    """Provide a consistent timestamp for testing."""
    return datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class FakeResolver:
    """Stands in for dns.asyncresolver.Resolver; answers or raises per record type."""

    def __init__(self, answers=None, failures=None):
        self.answers = answers or {}
        self.failures = failures or {}
        self.queries = []

    async def resolve(self, name, rdtype):
        self.queries.append((name, rdtype))
        if rdtype in self.failures:
            raise self.failures[rdtype]
        if rdtype not in self.answers:
            raise dns.resolver.NoAnswer()
        return self.answers[rdtype]


def _name(text: str) -> dns.name.Name:
    return dns.name.from_text(text)


@pytest.fixture
def example_dns_answers() -> dict:
    """Resolver answers for a domain with every record type populated."""
    return {
        "A": [SimpleNamespace(address="93.184.216.34")],
        "AAAA": [SimpleNamespace(address="2606:2800:220:1:248:1893:25c8:1946")],
        "MX": [
            SimpleNamespace(exchange=_name("mail.example.com"), preference=10),
            SimpleNamespace(exchange=_name("backup.example.com"), preference=20),
        ],
        "TXT": [SimpleNamespace(strings=(b"v=spf1 ", b"-all"))],
        "CNAME": [SimpleNamespace(target=_name("edge.example.net"))],
        "NS": [
            SimpleNamespace(target=_name("a.iana-servers.net")),
            SimpleNamespace(target=_name("b.iana-servers.net")),
        ],
        "SOA": [SimpleNamespace(
            mname=_name("ns.icann.org"),
            rname=_name("noc.dns.icann.org"),
            serial=2024010101,
            refresh=7200,
            retry=3600,
            expire=1209600,
            minimum=3600,
        )],
    }


@pytest.fixture
def fake_resolver_factory():
    """Build FakeResolver instances."""
    return FakeResolver
