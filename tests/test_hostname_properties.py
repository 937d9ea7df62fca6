"""
Property-based tests for the hostname normalizer.

Uses Hypothesis for property-based testing to verify normalization is total,
idempotent and canonicalizing.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from subledger.hostname import (
    MAX_HOSTNAME_LENGTH,
    is_valid_hostname,
    normalize_host,
    normalize_hosts,
)


@st.composite
def label_strategy(draw) -> str:
    """Generate valid LDH labels."""
    first = draw(st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"))
    rest = draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"),
        min_size=0,
        max_size=20,
    ))
    return first + rest


@st.composite
def hostname_strategy(draw) -> str:
    """Generate valid lower-case hostnames."""
    labels = draw(st.lists(label_strategy(), min_size=2, max_size=4))
    return ".".join(labels)


@st.composite
def messy_hostname_strategy(draw) -> tuple[str, str]:
    """Generate (raw, expected) pairs with random case and surrounding whitespace."""
    host = draw(hostname_strategy())
    flips = draw(st.lists(st.booleans(), min_size=len(host), max_size=len(host)))
    mixed = "".join(c.upper() if flip else c for c, flip in zip(host, flips))
    left = draw(st.sampled_from(["", " ", "  ", "\t", "\n "]))
    right = draw(st.sampled_from(["", " ", "\t", "\r\n"]))
    return left + mixed + right, host


class TestNormalizeHost:
    """Tests for normalize_host."""

    def test_trims_and_lowercases(self) -> None:
        assert normalize_host("  WWW.Example.COM ") == "www.example.com"

    def test_empty_stays_empty(self) -> None:
        assert normalize_host("") == ""
        assert normalize_host("   ") == ""

    def test_overlong_value_is_only_trimmed_and_lowercased(self) -> None:
        raw = " " + "A" * (MAX_HOSTNAME_LENGTH + 10) + " "
        assert normalize_host(raw) == "a" * (MAX_HOSTNAME_LENGTH + 10)

    def test_invalid_shape_passes_through(self) -> None:
        assert normalize_host(" Not A Host! ") == "not a host!"

    @given(pair=messy_hostname_strategy())
    @settings(max_examples=100)
    def test_canonicalizes_case_and_whitespace(self, pair: tuple[str, str]) -> None:
        raw, expected = pair
        assert normalize_host(raw) == expected

    @given(raw=st.text(max_size=300))
    @settings(max_examples=200)
    def test_never_raises_and_is_idempotent(self, raw: str) -> None:
        once = normalize_host(raw)
        assert normalize_host(once) == once


class TestIsValidHostname:
    """Tests for the FQDN shape check."""

    @given(host=hostname_strategy())
    @settings(max_examples=100)
    def test_generated_hostnames_are_valid(self, host: str) -> None:
        assert is_valid_hostname(host)

    def test_rejects_bad_shapes(self) -> None:
        assert not is_valid_hostname("")
        assert not is_valid_hostname("-bad.example.com")
        assert not is_valid_hostname("bad-.example.com")
        assert not is_valid_hostname("has space.example.com")
        assert not is_valid_hostname("a" * 64 + ".com")
        assert not is_valid_hostname(("a" * 60 + ".") * 5)

    def test_accepts_trailing_root_dot(self) -> None:
        assert is_valid_hostname("www.example.com.")

    def test_internationalized_names_checked_through_idna(self) -> None:
        assert is_valid_hostname("bücher.example")


class TestNormalizeHosts:
    """Tests for batch normalization."""

    def test_drops_empties_and_duplicates_in_order(self) -> None:
        raw = ["B.example.com", "", "a.example.com ", "b.example.com", "  "]
        assert normalize_hosts(raw) == ["b.example.com", "a.example.com"]

    @given(hosts=st.lists(hostname_strategy(), max_size=20))
    @settings(max_examples=100)
    def test_result_is_unique(self, hosts: list[str]) -> None:
        result = normalize_hosts(h.upper() for h in hosts)
        assert len(result) == len(set(result))
        assert set(result) == set(hosts)
