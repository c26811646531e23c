"""Property tests for request fingerprinting.

Equivalent requests must share a fingerprint (one cache entry, one
single-flight execution); requests that differ in kind, target or params
must not.
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from animescrape.models.requests import FetchRequest, RequestKind, request_fingerprint


kinds = st.sampled_from(list(RequestKind))
hosts = st.from_regex(r"[a-z]{3,10}\.(com|org|net|io)", fullmatch=True)
paths = st.from_regex(r"(/[a-z0-9]{1,8}){0,3}", fullmatch=True)
words = st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=8)
queries = st.lists(words, min_size=1, max_size=4).map(" ".join)
param_dicts = st.dictionaries(
    keys=st.text(alphabet="abcdefghij", min_size=1, max_size=5),
    values=st.one_of(st.integers(min_value=-100, max_value=100), words),
    max_size=4,
)


@settings(max_examples=100)
@given(host=hosts, path=paths, kind=kinds, params=param_dicts, fragment=words)
def test_url_spelling_does_not_change_fingerprint(
    host: str, path: str, kind: RequestKind, params: dict, fragment: str
) -> None:
    canonical = FetchRequest(target=f"https://{host}{path or '/'}", kind=kind, params=params)
    variant = FetchRequest(
        target=f"  HTTPS://{host.upper()}{path}#{fragment} ",
        kind=kind,
        params=dict(reversed(list(params.items()))),
    )
    assert request_fingerprint(canonical) == request_fingerprint(variant)


@settings(max_examples=100)
@given(query=queries, kind=kinds, padding=st.sampled_from([" ", "  ", "\t"]))
def test_query_whitespace_and_case_do_not_change_fingerprint(
    query: str, kind: RequestKind, padding: str
) -> None:
    spaced = padding + padding.join(query.upper().split()) + padding
    assert request_fingerprint(FetchRequest(target=query, kind=kind)) == request_fingerprint(
        FetchRequest(target=spaced, kind=kind)
    )


@settings(max_examples=100)
@given(query=queries, kinds_pair=st.lists(kinds, min_size=2, max_size=2, unique=True))
def test_kind_is_part_of_fingerprint(query: str, kinds_pair: list[RequestKind]) -> None:
    a, b = kinds_pair
    assert request_fingerprint(FetchRequest(target=query, kind=a)) != request_fingerprint(
        FetchRequest(target=query, kind=b)
    )


@settings(max_examples=100)
@given(query=queries, page_a=st.integers(min_value=1, max_value=50), page_b=st.integers(min_value=1, max_value=50))
def test_params_are_part_of_fingerprint(query: str, page_a: int, page_b: int) -> None:
    a = request_fingerprint(FetchRequest(target=query, params={"page": page_a}))
    b = request_fingerprint(FetchRequest(target=query, params={"page": page_b}))
    assert (a == b) == (page_a == page_b)


@settings(max_examples=100)
@given(query=queries, priority=st.integers(), timeout=st.floats(min_value=0.1, max_value=120))
def test_priority_and_timeout_ignored(query: str, priority: int, timeout: float) -> None:
    assert request_fingerprint(FetchRequest(target=query)) == request_fingerprint(
        FetchRequest(target=query, priority=priority, timeout_seconds=timeout)
    )
