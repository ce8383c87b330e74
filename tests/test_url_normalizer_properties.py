"""
Property-based tests for the URL Normalizer module.

Uses Hypothesis to check that every spelling of a server address maps to
one canonical key.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from cluster_locator.exceptions import UrlFormatError
from cluster_locator.url_normalizer import normalize_url, origin_of


# Strategies for generating server addresses

label_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
    min_size=1,
    max_size=12,
)


@st.composite
def host_strategy(draw) -> str:
    labels = draw(st.lists(label_strategy, min_size=1, max_size=4))
    tld = draw(st.sampled_from(["com", "net", "example", "io"]))
    return ".".join(labels + [tld])


@st.composite
def address_strategy(draw) -> str:
    """Addresses with optional scheme, port, path and mixed case."""
    host = draw(host_strategy())
    if draw(st.booleans()):
        host = host.upper()
    scheme = draw(st.sampled_from(["", "//", "https://", "http://", "HTTPS://"]))
    port = draw(st.one_of(st.none(), st.integers(min_value=1, max_value=65535)))
    path = draw(st.sampled_from(["", "/", "/api/1.0/status", "/x?y=1"]))
    address = f"{scheme}{host}"
    if port is not None:
        address += f":{port}"
    return address + path


def expect_error(raw: str) -> UrlFormatError:
    try:
        normalize_url(raw)
    except UrlFormatError as e:
        return e
    assert False, f"Expected UrlFormatError for {raw!r}"


class TestNormalizationIdempotenceProperty:
    """
    Property: normalizing a normalized URL returns it unchanged.
    """

    @given(address=address_strategy())
    @settings(max_examples=200)
    def test_normalize_is_idempotent(self, address: str) -> None:
        once = normalize_url(address)
        assert normalize_url(once) == once

    @given(address=address_strategy())
    @settings(max_examples=200)
    def test_normalized_form_has_scheme_host_and_port(self, address: str) -> None:
        url = normalize_url(address)
        scheme, rest = url.split("://", 1)
        assert scheme in ("http", "https")
        host, port = rest.rsplit(":", 1)
        assert host == host.lower()
        assert "/" not in rest
        assert 1 <= int(port) <= 65535

    @given(host=host_strategy(), path=st.sampled_from(["", "/", "/a/b"]))
    @settings(max_examples=100)
    def test_equivalent_spellings_collapse(self, host: str, path: str) -> None:
        spellings = [
            host,
            host.upper() + path,
            f"https://{host}{path}",
            f"//{host}:443{path}",
            f"HTTPS://{host}.{path}",
        ]
        assert {normalize_url(s) for s in spellings} == {f"https://{host}:443"}


class TestNormalizationExamples:
    """Concrete normalization cases."""

    def test_bare_host_defaults_to_https_443(self) -> None:
        assert normalize_url("a.example") == "https://a.example:443"

    def test_http_defaults_to_port_80(self) -> None:
        assert normalize_url("http://A.Example/") == "http://a.example:80"

    def test_explicit_port_is_kept(self) -> None:
        assert normalize_url("//a.example:8443/x") == "https://a.example:8443"

    def test_credentials_are_kept(self) -> None:
        assert normalize_url("https://user:pw@a.example") == "https://user:pw@a.example:443"

    def test_internationalized_host_is_idna_encoded(self) -> None:
        assert normalize_url("https://bücher.example") == "https://xn--bcher-kva.example:443"

    def test_ipv6_host_is_bracketed(self) -> None:
        assert normalize_url("https://[::1]:8080/path") == "https://[::1]:8080"

    def test_origin_of_normalized_url(self) -> None:
        assert origin_of("https://user:pw@a.example:8443") == "https://a.example:8443"
        assert origin_of("https://[::1]:443") == "https://[::1]:443"
        assert origin_of(normalize_url("a.example")) == "https://a.example:443"

    def test_empty_input_is_rejected(self) -> None:
        assert expect_error("   ").code == "empty_input"

    def test_missing_host_is_rejected(self) -> None:
        assert expect_error("https://").code == "missing_host"

    def test_forbidden_host_characters_are_rejected(self) -> None:
        assert expect_error("https://exa$mple.com").code == "forbidden_chars"

    def test_port_out_of_range_is_rejected(self) -> None:
        assert expect_error("https://a.example:99999").code == "parse_error"
