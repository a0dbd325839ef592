"""Structured client documents (sing-box, Clash, V2Ray) and URI bundles.

Each ``*_document`` function builds a plain dict whose top-level shape is
fixed per format; only the proxy section depends on the protocol. Output
text is produced by ``dump_json`` / ``dump_yaml`` with sorted keys so the
same endpoint always yields byte-identical text.
"""

from __future__ import annotations

import base64
import json
from typing import Any

import yaml

from vpstools.compiler.model import ProtocolType, TLSConfig, TransportConfig
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
from vpstools.compiler.uri import build_uri
from vpstools.constants import (
    CLASH_CONTROLLER,
    CLASH_HTTP_PORT,
    CLASH_SOCKS_PORT,
    PRIVATE_CIDRS,
    SINGBOX_MIXED_PORT,
    V2RAY_HTTP_PORT,
    V2RAY_SOCKS_PORT,
)
from vpstools.core.exceptions import UnsupportedProtocolError

PROXY_TAG = "proxy"


def dump_json(document: dict[str, Any]) -> str:
    return json.dumps(document, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def dump_yaml(document: dict[str, Any]) -> str:
    return yaml.safe_dump(document, sort_keys=True, allow_unicode=True, default_flow_style=False)


def _transport_of(endpoint: Endpoint) -> TransportConfig | None:
    return getattr(endpoint, "transport", None)


def _tls_of(endpoint: Endpoint) -> TLSConfig | None:
    return getattr(endpoint, "tls", None)


# =============================================================================
# sing-box
# =============================================================================


def _singbox_outbound(endpoint: Endpoint) -> dict[str, Any]:
    outbound: dict[str, Any] = {
        "type": str(endpoint.protocol),
        "tag": PROXY_TAG,
        "server": endpoint.server,
        "server_port": endpoint.port,
    }

    match endpoint:
        case ShadowsocksEndpoint(method=method, password=password):
            outbound |= {"method": method, "password": password}
        case VMessEndpoint(uuid=uuid, alter_id=alter_id, security=security):
            outbound |= {"uuid": uuid, "alter_id": alter_id, "security": security}
        case VLESSEndpoint(uuid=uuid, flow=flow):
            outbound["uuid"] = uuid
            if flow:
                outbound["flow"] = flow
        case HysteriaEndpoint(password=password, up_mbps=up, down_mbps=down):
            outbound |= {"auth_str": password, "up_mbps": up, "down_mbps": down}
        case TUICEndpoint(uuid=uuid, password=password):
            outbound |= {"uuid": uuid, "password": password}
        case NaiveEndpoint(username=username, password=password):
            outbound |= {"username": username, "password": password}
        case ShadowTLSEndpoint(password=password):
            outbound |= {"version": 3, "password": password}
        case TrojanEndpoint(password=password) | Hysteria2Endpoint(password=password):
            outbound["password"] = password

    if (transport := _transport_of(endpoint)) is not None:
        block: dict[str, Any] = {"type": transport.type}
        match transport.type:
            case "grpc":
                if transport.service_name:
                    block["service_name"] = transport.service_name
                if transport.idle_timeout:
                    block["idle_timeout"] = transport.idle_timeout
                if transport.ping_timeout:
                    block["ping_timeout"] = transport.ping_timeout
                if transport.permit_without_stream is not None:
                    block["permit_without_stream"] = transport.permit_without_stream
            case "ws" | "http" | "httpupgrade":
                if transport.path:
                    block["path"] = transport.path
                if transport.host:
                    match transport.type:
                        case "ws":
                            block["headers"] = {"Host": transport.host}
                        case "http":
                            block["host"] = [transport.host]
                        case _:
                            block["host"] = transport.host
        outbound["transport"] = block

    if (tls := _tls_of(endpoint)) is not None:
        tls_block: dict[str, Any] = {
            "enabled": True,
            "server_name": tls.server_name or endpoint.server,
            "insecure": tls.allow_insecure,
        }
        if tls.alpn:
            tls_block["alpn"] = list(tls.alpn)
        if tls.fingerprint:
            tls_block["utls"] = {"enabled": True, "fingerprint": tls.fingerprint}
        outbound["tls"] = tls_block

    return outbound


def singbox_document(endpoint: Endpoint, *, mixed_inbound: bool = False) -> dict[str, Any]:
    document: dict[str, Any] = {
        "log": {"level": "info", "timestamp": True},
        "outbounds": [
            _singbox_outbound(endpoint),
            {"type": "direct", "tag": "direct"},
            {"type": "block", "tag": "block"},
        ],
        "route": {
            "rules": [{"ip_cidr": list(PRIVATE_CIDRS), "outbound": "direct"}],
            "final": PROXY_TAG,
        },
    }
    if mixed_inbound:
        document["inbounds"] = [
            {
                "type": "mixed",
                "tag": "mixed-in",
                "listen": "127.0.0.1",
                "listen_port": SINGBOX_MIXED_PORT,
            }
        ]
    return document


# =============================================================================
# Clash
# =============================================================================

_CLASH_TYPES = {ProtocolType.SHADOWSOCKS: "ss"}


def _clash_proxy(endpoint: Endpoint) -> dict[str, Any]:
    if endpoint.protocol is ProtocolType.NAIVE:
        raise UnsupportedProtocolError(str(endpoint.protocol), "clash")

    proxy: dict[str, Any] = {
        "name": endpoint.name,
        "type": _CLASH_TYPES.get(endpoint.protocol, str(endpoint.protocol)),
        "server": endpoint.server,
        "port": endpoint.port,
    }

    match endpoint:
        case ShadowsocksEndpoint(method=method, password=password):
            proxy |= {"cipher": method, "password": password}
        case VMessEndpoint(uuid=uuid, alter_id=alter_id, security=security):
            proxy |= {"uuid": uuid, "alterId": alter_id, "cipher": security}
        case VLESSEndpoint(uuid=uuid, flow=flow):
            proxy["uuid"] = uuid
            if flow:
                proxy["flow"] = flow
        case HysteriaEndpoint(password=password, up_mbps=up, down_mbps=down):
            proxy |= {"auth-str": password, "up": f"{up} Mbps", "down": f"{down} Mbps"}
        case TUICEndpoint(uuid=uuid, password=password):
            proxy |= {"uuid": uuid, "password": password}
        case TrojanEndpoint(password=password) | Hysteria2Endpoint(password=password):
            proxy["password"] = password
        case ShadowTLSEndpoint(password=password):
            proxy["password"] = password

    if (transport := _transport_of(endpoint)) is not None:
        proxy["network"] = transport.type
        match transport.type:
            case "ws":
                opts: dict[str, Any] = {}
                if transport.path:
                    opts["path"] = transport.path
                if transport.host:
                    opts["headers"] = {"Host": transport.host}
                proxy["ws-opts"] = opts
            case "grpc":
                if transport.service_name:
                    proxy["grpc-opts"] = {"grpc-service-name": transport.service_name}

    if (tls := _tls_of(endpoint)) is not None:
        server_name = tls.server_name or endpoint.server
        if endpoint.protocol in (ProtocolType.VMESS, ProtocolType.VLESS):
            proxy |= {"tls": True, "servername": server_name}
        else:
            proxy["sni"] = server_name
        proxy["skip-cert-verify"] = tls.allow_insecure
        if tls.alpn:
            proxy["alpn"] = list(tls.alpn)
        if tls.fingerprint:
            proxy["client-fingerprint"] = tls.fingerprint

    return proxy


def clash_document(endpoint: Endpoint) -> dict[str, Any]:
    """Clash document with a single proxy.

    Raises:
        UnsupportedProtocolError: For naive, which Clash cannot dial.
    """
    proxy = _clash_proxy(endpoint)
    return {
        "port": CLASH_HTTP_PORT,
        "socks-port": CLASH_SOCKS_PORT,
        "allow-lan": False,
        "mode": "rule",
        "log-level": "info",
        "external-controller": CLASH_CONTROLLER,
        "proxies": [proxy],
        "proxy-groups": [{"name": "Proxy", "type": "select", "proxies": [proxy["name"], "DIRECT"]}],
        "rules": [
            *(f"IP-CIDR{'6' if ':' in cidr else ''},{cidr},DIRECT,no-resolve" for cidr in PRIVATE_CIDRS),
            "MATCH,Proxy",
        ],
    }


# =============================================================================
# V2Ray
# =============================================================================


def _v2ray_settings(endpoint: Endpoint) -> dict[str, Any]:
    match endpoint:
        case ShadowsocksEndpoint(method=method, password=password):
            server = {"address": endpoint.server, "port": endpoint.port, "method": method, "password": password}
            return {"servers": [server]}
        case TrojanEndpoint(password=password):
            return {"servers": [{"address": endpoint.server, "port": endpoint.port, "password": password}]}
        case VMessEndpoint(uuid=uuid, alter_id=alter_id, security=security):
            user: dict[str, Any] = {"id": uuid, "alterId": alter_id, "security": security}
        case VLESSEndpoint(uuid=uuid, flow=flow):
            user = {"id": uuid, "encryption": "none"}
            if flow:
                user["flow"] = flow
        case _:
            raise UnsupportedProtocolError(str(endpoint.protocol), "v2ray")
    return {"vnext": [{"address": endpoint.server, "port": endpoint.port, "users": [user]}]}


def _v2ray_stream(endpoint: Endpoint) -> dict[str, Any] | None:
    transport, tls = _transport_of(endpoint), _tls_of(endpoint)
    if transport is None and tls is None:
        return None

    stream: dict[str, Any] = {"network": transport.type if transport else "tcp"}
    if transport is not None:
        match transport.type:
            case "ws":
                ws: dict[str, Any] = {}
                if transport.path:
                    ws["path"] = transport.path
                if transport.host:
                    ws["headers"] = {"Host": transport.host}
                stream["wsSettings"] = ws
            case "grpc":
                stream["grpcSettings"] = {"serviceName": transport.service_name or ""}

    if tls is not None:
        tls_settings: dict[str, Any] = {"allowInsecure": tls.allow_insecure}
        if tls.server_name:
            tls_settings["serverName"] = tls.server_name
        if tls.alpn:
            tls_settings["alpn"] = list(tls.alpn)
        if tls.fingerprint:
            tls_settings["fingerprint"] = tls.fingerprint
        stream |= {"security": "tls", "tlsSettings": tls_settings}
    return stream


def v2ray_document(endpoint: Endpoint) -> dict[str, Any]:
    """V2Ray/Xray document with SOCKS and HTTP inbounds.

    Raises:
        UnsupportedProtocolError: For protocols outside ss/vmess/vless/trojan.
    """
    outbound: dict[str, Any] = {
        "protocol": str(endpoint.protocol),
        "tag": PROXY_TAG,
        "settings": _v2ray_settings(endpoint),
    }
    if (stream := _v2ray_stream(endpoint)) is not None:
        outbound["streamSettings"] = stream

    return {
        "log": {"loglevel": "info"},
        "inbounds": [
            {
                "tag": "socks-in",
                "listen": "127.0.0.1",
                "port": V2RAY_SOCKS_PORT,
                "protocol": "socks",
                "settings": {"auth": "noauth", "udp": True},
            },
            {"tag": "http-in", "listen": "127.0.0.1", "port": V2RAY_HTTP_PORT, "protocol": "http"},
        ],
        "outbounds": [outbound, {"protocol": "freedom", "tag": "direct"}],
        "routing": {
            "rules": [{"type": "field", "ip": list(PRIVATE_CIDRS), "outboundTag": "direct"}],
        },
    }


# =============================================================================
# URI bundle
# =============================================================================


def uri_bundle(endpoints: list[Endpoint], *, base64_body: bool = False) -> str:
    """One share link per line; optionally base64 as a subscription body."""
    body = "".join(f"{build_uri(e)}\n" for e in endpoints)
    if base64_body:
        return base64.b64encode(body.encode()).decode() + "\n"
    return body
