"""Shared test fixtures and mocks."""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from secswitch.policy import RuleSetStore, parse_policy


def make_http_flow(url="http://example.com/", method="GET",
                   client_ip="203.0.113.5", server_ip="198.51.100.10"):
    """Create an http.HTTPFlow-like object."""
    return SimpleNamespace(
        client_conn=SimpleNamespace(
            peername=(client_ip, 54321),
            sockname=(server_ip, 8080),
        ),
        request=SimpleNamespace(pretty_url=url, method=method),
        response=None,
    )


SITE_POLICY = """\
# Typical shop: login and admin over https, the rest over http
[mode=On ignoreHandlers=BuiltIn]
file login.aspx secure=Secure
directory / secure=Insecure
directory admin secure=Secure recurse=yes
directory admin/public secure=Insecure recurse=yes
"""


@pytest.fixture
def site_rules():
    return parse_policy(SITE_POLICY)


@pytest.fixture
def site_store(site_rules):
    return RuleSetStore(site_rules)
