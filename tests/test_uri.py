"""Tests for share-link building and parsing."""

from __future__ import annotations

import base64
import json

import pytest

from vpstools.compiler.model import TLSConfig, TransportConfig
from vpstools.compiler.protocols import (
    Endpoint,
    Hysteria2Endpoint,
    HysteriaEndpoint,
    NaiveEndpoint,
    ShadowsocksEndpoint,
    ShadowTLSEndpoint,
    TrojanEndpoint,
    TUICEndpoint,
    VLESSEndpoint,
    VMessEndpoint,
)
from vpstools.compiler.uri import build_uri, parse_uri
from vpstools.core.exceptions import InvalidConfigurationError, UnsupportedProtocolError

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

UUID = "b831381d-6324-4d53-ad4f-8cda48b30811"
TLS = TLSConfig(server_name="cdn.example.com", alpn=("h2", "http/1.1"), fingerprint="chrome")

ENDPOINTS: list[Endpoint] = [
    ShadowsocksEndpoint(server="1.2.3.4", port=8388, name="ss", method="chacha20-ietf-poly1305", password="pw"),
    VMessEndpoint(
        server="vm.example.com",
        port=443,
        name="vmess ws",
        uuid=UUID,
        transport=TransportConfig(type="ws", path="/ray", host="cdn.example.com"),
        tls=TLS,
    ),
    VLESSEndpoint(
        server="2001:db8::1",
        port=443,
        name="vless",
        uuid=UUID,
        flow="xtls-rprx-vision",
        tls=TLSConfig(server_name="example.com", allow_insecure=True),
    ),
    VMessEndpoint(
        server="vm.example.com",
        port=443,
        name="vmess grpc",
        uuid=UUID,
        transport=TransportConfig(type="grpc", path="tun"),
        tls=TLS,
    ),
    VLESSEndpoint(
        server="vl.example.com",
        port=443,
        name="vless grpc keepalive",
        uuid=UUID,
        transport=TransportConfig(
            type="grpc", service_name="svc", idle_timeout="15s", ping_timeout="10s", permit_without_stream=True,
        ),
        tls=TLS,
    ),
    TrojanEndpoint(
        server="tr.example.com",
        port=443,
        name="trojan grpc",
        password="p@ss/word?#",
        transport=TransportConfig(type="grpc", service_name="tun"),
        tls=TLS,
    ),
    HysteriaEndpoint(server="1.2.3.4", port=36712, name="hy", password="auth&me", up_mbps=20, down_mbps=80, tls=TLS),
    Hysteria2Endpoint(server="1.2.3.4", port=443, name="hy2", password="secret", tls=TLSConfig(allow_insecure=True)),
    TUICEndpoint(server="1.2.3.4", port=443, name="tuic", uuid=UUID, password="p:w", tls=TLS),
    NaiveEndpoint(server="naive.example.com", port=443, name="naive", username="me", password="pw", tls=TLS),
    ShadowTLSEndpoint(server="1.2.3.4", port=443, name="stls", password="pw", tls=None),
]


class TestRoundTrip:
    @pytest.mark.parametrize("endpoint", ENDPOINTS, ids=lambda e: str(e.protocol))
    def test_parse_inverts_build(self, endpoint: Endpoint) -> None:
        assert parse_uri(build_uri(endpoint)) == endpoint


class TestBuild:
    def test_shadowsocks_sip002(self) -> None:
        endpoint = ShadowsocksEndpoint(
            server="1.2.3.4", port=8388, name="shadowsocks-1.2.3.4", method="aes-256-gcm", password="p@ss",
        )

        uri = build_uri(endpoint)

        assert uri.startswith("ss://")
        assert uri.endswith("@1.2.3.4:8388#shadowsocks-1.2.3.4")
        userinfo = uri.removeprefix("ss://").split("@")[0]
        assert "=" not in userinfo
        padded = userinfo + "=" * (-len(userinfo) % 4)
        assert base64.urlsafe_b64decode(padded).decode() == "aes-256-gcm:p@ss"

    def test_ipv6_host_is_bracketed(self) -> None:
        uri = build_uri(Hysteria2Endpoint(server="2001:db8::1", port=443, name="x", password="pw"))

        assert "@[2001:db8::1]:443" in uri

    def test_special_characters_are_escaped(self) -> None:
        uri = build_uri(TrojanEndpoint(server="1.2.3.4", port=443, name="my proxy #1", password="a b@c"))

        assert uri == "trojan://a%20b%40c@1.2.3.4:443#my%20proxy%20%231"

    def test_vmess_payload(self) -> None:
        endpoint = VMessEndpoint(
            server="vm.example.com",
            port=443,
            name="vm",
            uuid=UUID,
            transport=TransportConfig(type="grpc", service_name="svc"),
            tls=TLSConfig(),
        )

        payload = json.loads(base64.b64decode(build_uri(endpoint).removeprefix("vmess://")))

        assert payload["v"] == "2"
        assert payload["port"] == "443"
        assert payload["aid"] == "0"
        assert payload["net"] == "grpc"
        assert payload["path"] == "svc"
        assert payload["tls"] == "tls"
        assert "allowInsecure" not in payload

    def test_vless_defaults(self) -> None:
        uri = build_uri(VLESSEndpoint(server="1.2.3.4", port=443, name="v", uuid=UUID))

        assert uri == f"vless://{UUID}@1.2.3.4:443?encryption=none#v"

    def test_tls_less_links_have_no_insecure_flag(self) -> None:
        uri = build_uri(ShadowTLSEndpoint(server="1.2.3.4", port=443, name="s", password="pw"))

        assert "insecure" not in uri


class TestParse:
    def test_plain_shadowsocks_userinfo(self) -> None:
        endpoint = parse_uri("ss://aes-128-gcm:pw@1.2.3.4:8388")

        assert endpoint == ShadowsocksEndpoint(
            server="1.2.3.4", port=8388, name="shadowsocks-1.2.3.4", method="aes-128-gcm", password="pw",
        )

    def test_hy2_alias(self) -> None:
        endpoint = parse_uri("hy2://pw@1.2.3.4:443?sni=a.com&insecure=0#x")

        assert isinstance(endpoint, Hysteria2Endpoint)
        assert endpoint.tls == TLSConfig(server_name="a.com")

    def test_grpc_path_is_read_as_service_name(self) -> None:
        endpoint = parse_uri(f"vless://{UUID}@1.2.3.4:443?type=grpc&path=tun#x")

        assert isinstance(endpoint, VLESSEndpoint)
        assert endpoint.transport == TransportConfig(type="grpc", service_name="tun")

    def test_unknown_scheme(self) -> None:
        with pytest.raises(UnsupportedProtocolError):
            parse_uri("wireguard://key@1.2.3.4:51820")

    @pytest.mark.parametrize(
        "text",
        [
            "not a link",
            "trojan://1.2.3.4:443",
            "trojan://pw@1.2.3.4:notaport",
            "trojan://pw@1.2.3.4:70000",
            "tuic://uuidonly@1.2.3.4:443",
            "hysteria://1.2.3.4:443?upmbps=10",
            "hysteria://1.2.3.4:443?auth=x&upmbps=fast",
            f"vless://{UUID}@1.2.3.4:443?type=grpc&path=a&serviceName=b",
            "vmess://%%%",
        ],
    )
    def test_malformed(self, text: str) -> None:
        with pytest.raises(InvalidConfigurationError):
            parse_uri(text)
