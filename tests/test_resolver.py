"""Tests for handle and DID resolution, against a mocked HTTP transport."""

import httpx
import pytest

from pdsmover.config import MoverConfig
from pdsmover.exceptions import ResolutionError
from pdsmover.identity import IdentityResolver

DID = "did:plc:abc123"
PDS = "https://old.pds.example"


def did_document(did=DID, services=None):
    if services is None:
        services = [{"id": "#atproto_pds", "type": "AtprotoPersonalDataServer", "serviceEndpoint": PDS}]
    return {"id": did, "alsoKnownAs": ["at://alice.example.com"], "service": services}


def make_resolver(handler, **overrides):
    config = MoverConfig(retry_delay=0.0, max_retries=3, **overrides)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return IdentityResolver(config, client=client)


class TestResolveHandle:
    def test_dns_txt_record(self) -> None:
        seen = []

        def handler(request):
            seen.append(request.url)
            assert request.url.host == "mozilla.cloudflare-dns.com"
            assert request.url.params["name"] == "_atproto.alice.example.com"
            assert request.url.params["type"] == "TXT"
            return httpx.Response(200, json={"Status": 0, "Answer": [
                {"name": "_atproto.alice.example.com", "type": 16, "data": '"did=did:plc:abc123"'},
            ]})

        assert make_resolver(handler).resolve_handle("alice.example.com") == DID
        assert len(seen) == 1

    def test_falls_back_to_well_known(self) -> None:
        def handler(request):
            if request.url.host == "mozilla.cloudflare-dns.com":
                return httpx.Response(200, json={"Status": 3})
            assert str(request.url) == "https://alice.example.com/.well-known/atproto-did"
            return httpx.Response(200, text=f"{DID}\n")

        assert make_resolver(handler).resolve_handle("alice.example.com") == DID

    def test_unresolvable(self) -> None:
        def handler(request):
            if request.url.host == "mozilla.cloudflare-dns.com":
                return httpx.Response(200, json={"Answer": [{"data": '"v=spf1 -all"'}]})
            return httpx.Response(404, text="not found")

        with pytest.raises(ResolutionError, match="Could not resolve handle"):
            make_resolver(handler).resolve_handle("nobody.example.com")

    def test_well_known_must_be_a_did(self) -> None:
        def handler(request):
            if request.url.host == "mozilla.cloudflare-dns.com":
                return httpx.Response(500)
            return httpx.Response(200, text="<html>hello</html>")

        with pytest.raises(ResolutionError):
            make_resolver(handler).resolve_handle("alice.example.com")


class TestResolveDidDocument:
    def test_plc_document(self) -> None:
        def handler(request):
            assert str(request.url) == f"https://plc.directory/{DID}"
            return httpx.Response(200, json=did_document())

        resolver = make_resolver(handler)

        assert resolver.resolve_did_document(DID)["id"] == DID
        assert resolver.resolve_pds(DID) == PDS

    def test_web_document(self) -> None:
        did = "did:web:alice.example.com"

        def handler(request):
            assert str(request.url) == "https://alice.example.com/.well-known/did.json"
            return httpx.Response(200, json=did_document(did))

        assert make_resolver(handler).resolve_pds(did) == PDS

    def test_document_without_pds(self) -> None:
        def handler(request):
            return httpx.Response(200, json=did_document(services=[
                {"id": "#bsky_fg", "type": "BskyFeedGenerator", "serviceEndpoint": "https://feed.example"},
            ]))

        with pytest.raises(ResolutionError, match="Could not find a PDS in the DID document."):
            make_resolver(handler).resolve_pds(DID)

    def test_unknown_method(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(500))

        with pytest.raises(ResolutionError, match="Unsupported DID method"):
            resolver.resolve_did_document("did:key:z6Mk")

    def test_not_found(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(404, json={"message": "DID not registered"}))

        with pytest.raises(ResolutionError, match="404"):
            resolver.resolve_did_document(DID)

    def test_document_that_is_not_json(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(ResolutionError, match="not valid JSON"):
            resolver.resolve_did_document(DID)

    def test_document_that_is_not_an_object(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(200, json=["not", "a", "document"]))

        with pytest.raises(ResolutionError, match="Unexpected DID document format"):
            resolver.resolve_pds(DID)


class TestPlcLog:
    def test_log_that_is_not_json(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(200, text="upstream timeout"))

        with pytest.raises(ResolutionError, match="not valid JSON"):
            resolver.fetch_plc_log(DID)

    def test_fetches_the_log(self) -> None:
        log = [{"type": "plc_operation", "services": {}}]

        def handler(request):
            assert str(request.url) == f"https://plc.example/{DID}/log"
            return httpx.Response(200, json=log)

        resolver = make_resolver(handler, plc_directory_url="https://plc.example/")

        assert resolver.fetch_plc_log(DID) == log

    def test_only_plc_dids_have_a_log(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(500))

        with pytest.raises(ResolutionError):
            resolver.fetch_plc_log("did:web:alice.example.com")

    def test_unexpected_format(self) -> None:
        resolver = make_resolver(lambda request: httpx.Response(200, json={"log": []}))

        with pytest.raises(ResolutionError, match="Unexpected PLC log format"):
            resolver.fetch_plc_log(DID)


class TestRetries:
    def test_transport_errors_are_retried(self) -> None:
        attempts = []

        def handler(request):
            attempts.append(request.url)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=did_document())

        assert make_resolver(handler).resolve_pds(DID) == PDS
        assert len(attempts) == 3

    def test_gives_up_after_max_retries(self) -> None:
        attempts = []

        def handler(request):
            attempts.append(request.url)
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(ResolutionError, match="Timed out"):
            make_resolver(handler).resolve_did_document(DID)
        assert len(attempts) == 3
