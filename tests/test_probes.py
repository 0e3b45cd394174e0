# tests/test_probes.py
import socket
import threading

import dns.exception
import dns.resolver
import pytest
from scapy.all import ICMP, IP

import probes
from orchestrator import HostProber
from scan_models import Outcome, OutcomeKind


@pytest.fixture
def listening_port():
    """A loopback TCP port that accepts connections."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(5)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A loopback TCP port that is bound but not listening, so connects are refused."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    yield sock.getsockname()[1]
    sock.close()


def test_port_probe_detects_open_port(listening_port):
    assert probes.is_port_open("127.0.0.1", listening_port, timeout=1.0) is True


def test_port_probe_treats_refused_as_closed(closed_port):
    assert probes.is_port_open("127.0.0.1", closed_port, timeout=1.0) is False


def test_port_probe_rejects_invalid_port():
    assert probes.is_port_open("127.0.0.1", 70000) is False


def test_host_with_one_open_and_one_closed_port(listening_port, closed_port):
    """Real connect probes: only the listening port ends up in OpenPorts."""
    prober = HostProber(
        [listening_port, closed_port],
        ping=lambda ip: True,
        reverse=lambda ip: Outcome.not_found(),
        link_layer=type("NoMac", (), {"resolve": lambda self, ip: Outcome.not_found()})(),
        ssdp=lambda ip: Outcome.not_found(),
    )

    result = prober.probe("127.0.0.1")

    assert result.open_ports == (listening_port,)


def test_ping_reports_echo_reply(monkeypatch):
    monkeypatch.setattr(probes, "sr1", lambda *a, **kw: IP(src="10.0.0.5") / ICMP(type=0))
    assert probes.is_host_reachable("10.0.0.5") is True


def test_ping_treats_unreachable_reply_as_down(monkeypatch):
    monkeypatch.setattr(probes, "sr1", lambda *a, **kw: IP(src="10.0.0.1") / ICMP(type=3, code=1))
    assert probes.is_host_reachable("10.0.0.5") is False


def test_ping_treats_timeout_as_down(monkeypatch):
    monkeypatch.setattr(probes, "sr1", lambda *a, **kw: None)
    assert probes.is_host_reachable("10.0.0.5") is False


def test_ping_swallows_permission_error(monkeypatch):
    def no_raw_sockets(*args, **kwargs):
        raise PermissionError("Operation not permitted")

    monkeypatch.setattr(probes, "sr1", no_raw_sockets)
    assert probes.is_host_reachable("10.0.0.5") is False


class FakeRecord:
    def __init__(self, text):
        self.text = text

    def to_text(self):
        return self.text


class FakeResolver:
    answer = []
    error = None

    def __init__(self):
        self.timeout = None
        self.lifetime = None

    def resolve(self, qname, rdtype):
        assert rdtype == "PTR"
        assert str(qname).endswith("in-addr.arpa.")
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def fake_resolver(monkeypatch):
    FakeResolver.answer = []
    FakeResolver.error = None
    monkeypatch.setattr(dns.resolver, "Resolver", FakeResolver)
    return FakeResolver


def test_reverse_lookup_returns_name(fake_resolver):
    fake_resolver.answer = [FakeRecord("printer.lan.")]
    assert probes.reverse_lookup("192.168.1.30") == Outcome.resolved("printer.lan")


def test_reverse_lookup_empty_name_is_not_found(fake_resolver):
    fake_resolver.answer = [FakeRecord(".")]
    assert probes.reverse_lookup("192.168.1.30").kind is OutcomeKind.NOT_FOUND


def test_reverse_lookup_no_answer_is_not_found(fake_resolver):
    fake_resolver.error = dns.resolver.NoAnswer()
    assert probes.reverse_lookup("192.168.1.30").kind is OutcomeKind.NOT_FOUND


@pytest.mark.parametrize("error", [dns.resolver.NXDOMAIN(), dns.exception.Timeout(), dns.resolver.NoNameservers()])
def test_reverse_lookup_failures_are_distinct_from_not_found(fake_resolver, error):
    fake_resolver.error = error
    assert probes.reverse_lookup("192.168.1.30").kind is OutcomeKind.FAILED


def test_ssdp_request_format():
    assert probes.build_ssdp_request("192.168.1.1") == (
        b"M-SEARCH * HTTP/1.1\r\n"
        b"HOST: 192.168.1.1:1900\r\n"
        b'MAN: "ssdp:discover"\r\n'
        b"MX: 1\r\n"
        b"ST: ssdp:all\r\n"
        b"\r\n"
    )


def test_ssdp_parse_returns_first_matching_header():
    data = (
        b"HTTP/1.1 200 OK\r\n"
        b"CACHE-CONTROL: max-age=1800\r\n"
        b"Location: http://192.168.1.1:5000/rootDesc.xml\r\n"
        b"SERVER: Linux/5.10 UPnP/1.1 MiniUPnPd/2.2\r\n"
        b"\r\n"
    )
    assert probes.parse_ssdp_response(data) == Outcome.resolved("Location: http://192.168.1.1:5000/rootDesc.xml")


def test_ssdp_parse_without_matching_header():
    assert probes.parse_ssdp_response(b"HTTP/1.1 200 OK\r\nST: upnp:rootdevice\r\n\r\n").kind is OutcomeKind.NOT_FOUND


def test_ssdp_parse_garbage_has_no_header():
    assert probes.parse_ssdp_response(b"\xff\xfe\x00junk").kind is OutcomeKind.NOT_FOUND


def test_ssdp_parse_tolerates_non_ascii_in_other_headers():
    data = (
        b"HTTP/1.1 200 OK\r\n"
        b"USN: uuid:caf\xc3\xa9-1234\r\n"
        b"SERVER: Linux/5.10 UPnP/1.0 MiniUPnPd/2.2\r\n"
        b"\r\n"
    )
    assert probes.parse_ssdp_response(data) == Outcome.resolved("SERVER: Linux/5.10 UPnP/1.0 MiniUPnPd/2.2")


def test_ssdp_query_reads_single_reply():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(5)
    port = server.getsockname()[1]
    received = []

    def respond():
        data, addr = server.recvfrom(4096)
        received.append(data)
        server.sendto(b"HTTP/1.1 200 OK\r\nSERVER: TestOS/1.0 UPnP/1.0\r\n\r\n", addr)
        server.sendto(b"HTTP/1.1 200 OK\r\nSERVER: Second/2.0\r\n\r\n", addr)

    thread = threading.Thread(target=respond)
    thread.start()
    try:
        outcome = probes.query_ssdp("127.0.0.1", timeout=2.0, port=port)
    finally:
        thread.join()
        server.close()

    assert outcome == Outcome.resolved("SERVER: TestOS/1.0 UPnP/1.0")
    assert received[0].startswith(b"M-SEARCH * HTTP/1.1\r\n")


def test_ssdp_query_times_out_quietly():
    silent = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    silent.bind(("127.0.0.1", 0))
    try:
        outcome = probes.query_ssdp("127.0.0.1", timeout=0.2, port=silent.getsockname()[1])
    finally:
        silent.close()

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.render("-") == "-"
