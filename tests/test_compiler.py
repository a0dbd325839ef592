"""Tests for the configuration catalog, rendering matrix and export."""

from __future__ import annotations

import base64
import json

import pytest
import yaml
from pydantic import ValidationError

from vpstools.api.model import VPSInstance
from vpstools.compiler.apps import APP_PROFILES, apps_for
from vpstools.compiler.compiler import ConfigurationCompiler
from vpstools.compiler.model import (
    ClientAppType,
    ClientConfigFormat,
    ClientConfiguration,
    ProtocolType,
    TLSConfig,
    TransportConfig,
)
from vpstools.compiler.protocols import ShadowsocksEndpoint, VMessEndpoint, to_endpoint
from vpstools.compiler.uri import parse_uri
from vpstools.core.exceptions import (
    ExportFailedError,
    InvalidConfigurationError,
    MissingFieldError,
    UnknownConfigurationError,
    UnsupportedCombinationError,
    UnsupportedProtocolError,
)
from vpstools.export.sink import MemorySink

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

UUID = "b831381d-6324-4d53-ad4f-8cda48b30811"


def _ss(**kwargs: object) -> ClientConfiguration:
    fields: dict[str, object] = {
        "vps_id": "vps-1",
        "protocol_type": ProtocolType.SHADOWSOCKS,
        "server_address": "1.2.3.4",
        "port": 8388,
        "password": "p@ss",
        "method": "aes-256-gcm",
    }
    return ClientConfiguration(**{**fields, **kwargs})  # type: ignore[arg-type]


def _vless_ws() -> ClientConfiguration:
    return ClientConfiguration(
        vps_id="vps-1",
        protocol_type=ProtocolType.VLESS,
        server_address="vl.example.com",
        port=443,
        uuid=UUID,
        transport=TransportConfig(type="ws", path="/ray", host="cdn.example.com"),
        tls=TLSConfig(server_name="cdn.example.com", fingerprint="chrome"),
    )


class FailingSink:
    def write(self, filename: str, content: str) -> str:
        raise PermissionError("read-only filesystem")


class TestEndpointProjection:
    def test_shadowsocks(self) -> None:
        assert to_endpoint(_ss()) == ShadowsocksEndpoint(
            server="1.2.3.4", port=8388, name="shadowsocks-1.2.3.4", method="aes-256-gcm", password="p@ss",
        )

    def test_missing_method(self) -> None:
        with pytest.raises(MissingFieldError) as exc_info:
            to_endpoint(_ss(method=None))

        assert exc_info.value.field == "method"
        assert exc_info.value.protocol == "shadowsocks"

    def test_empty_string_counts_as_missing(self) -> None:
        with pytest.raises(MissingFieldError, match="password"):
            to_endpoint(_ss(password=""))

    def test_vmess_without_uuid(self) -> None:
        config = ClientConfiguration(
            vps_id="v", protocol_type=ProtocolType.VMESS, server_address="1.2.3.4", port=443,
        )
        with pytest.raises(MissingFieldError, match="uuid"):
            to_endpoint(config)

    def test_disabled_tls_and_plain_tcp_are_dropped(self) -> None:
        config = ClientConfiguration(
            vps_id="v",
            protocol_type=ProtocolType.VMESS,
            server_address="1.2.3.4",
            port=443,
            uuid=UUID,
            transport=TransportConfig(type="TCP"),
            tls=TLSConfig(enabled=False),
        )
        endpoint = to_endpoint(config)

        assert isinstance(endpoint, VMessEndpoint)
        assert endpoint.transport is None
        assert endpoint.tls is None


class TestTransportConfig:
    def test_grpc_path_becomes_service_name(self) -> None:
        transport = TransportConfig(type="GRPC", path="tun")

        assert transport == TransportConfig(type="grpc", service_name="tun")
        assert transport.path is None

    def test_grpc_path_and_service_name_must_agree(self) -> None:
        assert TransportConfig(type="grpc", path="a", service_name="a").service_name == "a"
        with pytest.raises(ValidationError):
            TransportConfig(type="grpc", path="a", service_name="b")

    def test_other_transports_keep_path(self) -> None:
        assert TransportConfig(type="ws", path="/ray").path == "/ray"


class TestCatalog:
    def test_add_get_remove(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        assert compiler.get(config.id) is config
        assert compiler.for_vps("vps-1") == [config]
        assert compiler.remove(config.id) is True
        assert compiler.remove(config.id) is False
        with pytest.raises(UnknownConfigurationError):
            compiler.get(config.id)

    def test_add_never_overwrites(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        with pytest.raises(InvalidConfigurationError):
            compiler.add(_ss(id=config.id, port=9999))

        assert compiler.get(config.id).port == 8388

    def test_remove_many(self) -> None:
        compiler = ConfigurationCompiler()
        a, b = compiler.add(_ss()), compiler.add(_ss())

        assert compiler.remove_many([a.id, b.id, "missing"]) == 2
        assert compiler.configurations() == []

    def test_restore_rejects_duplicates(self) -> None:
        config = _ss()

        with pytest.raises(InvalidConfigurationError, match="duplicate"):
            ConfigurationCompiler().restore([config, config])

    def test_invalid_record(self) -> None:
        with pytest.raises(ValueError):
            _ss(port=0)
        with pytest.raises(ValueError):
            _ss(server_address="  ")


class TestFromDeployment:
    def _vps(self, make_instance) -> VPSInstance:
        return make_instance(host="203.0.113.7", instance_id="vps-7")

    def test_vless_with_transport_and_tls(self, make_instance) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.from_deployment(
            self._vps(make_instance),
            {
                "protocol": "vless",
                "port": "443",
                "uuid": UUID,
                "vless_transport_type": "ws",
                "vless_transport_path": "/ray",
                "tls_enabled": "true",
                "tls_server_name": "cdn.example.com",
                "tls_alpn": "h2, http/1.1",
            },
            deployment_task_id="task-1",
        )

        assert config.vps_id == "vps-7"
        assert config.server_address == "203.0.113.7"
        assert config.port == 443
        assert config.deployment_task_id == "task-1"
        assert config.transport == TransportConfig(type="ws", path="/ray")
        assert config.tls == TLSConfig(server_name="cdn.example.com", alpn=("h2", "http/1.1"))
        assert compiler.get(config.id) == config

    def test_grpc_transport(self, make_instance) -> None:
        config = ConfigurationCompiler().from_deployment(
            self._vps(make_instance),
            {
                "protocol": "vless",
                "port": "443",
                "uuid": UUID,
                "vless_transport_type": "grpc",
                "vless_transport_path": "tun",
                "vless_transport_idle_timeout": "15s",
                "vless_transport_ping_timeout": "15s",
                "vless_transport_permit_without_stream": "true",
            },
        )

        assert config.transport == TransportConfig(
            type="grpc", service_name="tun", idle_timeout="15s", ping_timeout="15s", permit_without_stream=True,
        )

    def test_grpc_service_name_variable_wins(self, make_instance) -> None:
        config = ConfigurationCompiler().from_deployment(
            self._vps(make_instance),
            {
                "protocol": "vless",
                "uuid": UUID,
                "vless_transport_type": "grpc",
                "vless_transport_path": "/ignored",
                "vless_transport_service_name": "svc",
            },
        )

        assert config.transport == TransportConfig(type="grpc", service_name="svc")

    def test_defaults(self, make_instance) -> None:
        config = ConfigurationCompiler().from_deployment(
            self._vps(make_instance), {"password": "pw", "method": "aes-256-gcm"},
        )

        assert config.protocol_type is ProtocolType.SHADOWSOCKS
        assert config.port == 8080
        assert config.tls is None
        assert config.transport is None

    def test_unknown_protocol(self, make_instance) -> None:
        with pytest.raises(UnsupportedProtocolError):
            ConfigurationCompiler().from_deployment(self._vps(make_instance), {"protocol": "wireguard"})

    def test_bad_port(self, make_instance) -> None:
        compiler = ConfigurationCompiler()
        with pytest.raises(InvalidConfigurationError):
            compiler.from_deployment(self._vps(make_instance), {"port": "https"})
        with pytest.raises(InvalidConfigurationError):
            compiler.from_deployment(self._vps(make_instance), {"port": "70000"})
        assert compiler.configurations() == []


class TestRender:
    def test_output_is_deterministic(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_vless_ws())

        for fmt in ClientConfigFormat:
            assert compiler.render(config.id, fmt) == compiler.render(config.id, fmt)

    def test_sing_box(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_vless_ws())

        document = json.loads(compiler.render(config.id, "sing-box"))

        proxy = document["outbounds"][0]
        assert proxy["type"] == "vless"
        assert proxy["uuid"] == UUID
        assert proxy["transport"] == {"type": "ws", "path": "/ray", "headers": {"Host": "cdn.example.com"}}
        assert proxy["tls"]["server_name"] == "cdn.example.com"
        assert proxy["tls"]["utls"] == {"enabled": True, "fingerprint": "chrome"}
        assert document["route"]["final"] == "proxy"
        assert "inbounds" not in document

    def test_sing_box_grpc_keepalive(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(
            _vless_ws().model_copy(
                update={
                    "transport": TransportConfig(
                        type="grpc", service_name="tun", idle_timeout="15s", permit_without_stream=False,
                    )
                }
            )
        )

        proxy = json.loads(compiler.render(config.id, "sing-box"))["outbounds"][0]

        assert proxy["transport"] == {
            "type": "grpc",
            "service_name": "tun",
            "idle_timeout": "15s",
            "permit_without_stream": False,
        }

    def test_sing_box_apps_get_a_local_inbound(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        document = json.loads(compiler.render(config.id, "sing-box", "hiddify"))

        assert document["inbounds"][0]["type"] == "mixed"
        assert document["inbounds"][0]["listen"] == "127.0.0.1"

    def test_clash_yaml(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        document = yaml.safe_load(compiler.render(config.id, ClientConfigFormat.CLASH, ClientAppType.STASH))

        assert document["proxies"] == [
            {
                "name": "shadowsocks-1.2.3.4",
                "type": "ss",
                "server": "1.2.3.4",
                "port": 8388,
                "cipher": "aes-256-gcm",
                "password": "p@ss",
            }
        ]
        assert document["proxy-groups"][0]["proxies"] == ["shadowsocks-1.2.3.4", "DIRECT"]
        assert document["rules"][-1] == "MATCH,Proxy"
        assert document["allow-lan"] is False

    def test_clash_vless_tls(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_vless_ws())

        proxy = yaml.safe_load(compiler.render(config.id, "clash"))["proxies"][0]

        assert proxy["network"] == "ws"
        assert proxy["ws-opts"] == {"path": "/ray", "headers": {"Host": "cdn.example.com"}}
        assert proxy["tls"] is True
        assert proxy["servername"] == "cdn.example.com"
        assert proxy["client-fingerprint"] == "chrome"

    def test_v2ray(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_vless_ws())

        document = json.loads(compiler.render(config.id, "v2ray", "v2rayng"))

        outbound = document["outbounds"][0]
        assert outbound["protocol"] == "vless"
        assert outbound["settings"]["vnext"][0]["users"] == [{"id": UUID, "encryption": "none"}]
        assert outbound["streamSettings"]["network"] == "ws"
        assert outbound["streamSettings"]["security"] == "tls"
        assert [i["protocol"] for i in document["inbounds"]] == ["socks", "http"]

    def test_uri_bundle(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        plain = compiler.render(config.id, "uri-bundle", "surge")
        encoded = compiler.render(config.id, "uri-bundle", "shadowrocket")

        assert plain == compiler.generate_protocol_url(config.id) + "\n"
        assert base64.b64decode(encoded).decode() == plain

    def test_generated_url_parses_back(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_vless_ws())

        assert parse_uri(compiler.generate_protocol_url(config.id)) == to_endpoint(config)

    def test_vmess_grpc_url_parses_back(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(
            ClientConfiguration(
                vps_id="vps-1",
                protocol_type=ProtocolType.VMESS,
                server_address="203.0.113.7",
                port=443,
                uuid=UUID,
                transport=TransportConfig(type="grpc", path="tun"),
                tls=TLSConfig(server_name="cdn.example.com"),
            )
        )

        endpoint = parse_uri(compiler.generate_protocol_url(config.id))

        assert endpoint == to_endpoint(config)
        assert isinstance(endpoint, VMessEndpoint)
        assert endpoint.transport == TransportConfig(type="grpc", service_name="tun")

    def test_render_does_not_mutate(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())
        compiler.render(config.id, "clash")

        assert compiler.configurations() == [config]


class TestRenderErrors:
    def test_unknown_record(self) -> None:
        with pytest.raises(UnknownConfigurationError):
            ConfigurationCompiler().render("missing", "sing-box")

    def test_missing_field_beats_matrix(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss(method=None))

        with pytest.raises(MissingFieldError):
            compiler.render(config.id, "sing-box")
        with pytest.raises(MissingFieldError):
            compiler.generate_protocol_url(config.id)

    @pytest.mark.parametrize(
        ("fmt", "app"),
        [
            ("clash", "v2rayng"),
            ("sing-box", "stash"),
            ("uri-bundle", "hiddify"),
            ("yaml", None),
            ("clash", "netflix"),
        ],
    )
    def test_unsupported_combination(self, fmt: str, app: str | None) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        with pytest.raises(UnsupportedCombinationError):
            compiler.render(config.id, fmt, app)

    def test_app_that_cannot_dial_protocol(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(
            ClientConfiguration(
                vps_id="v", protocol_type=ProtocolType.TUIC, server_address="1.2.3.4", port=443,
                uuid=UUID, password="pw",
            )
        )

        with pytest.raises(UnsupportedCombinationError):
            compiler.render(config.id, "v2ray", "v2rayu")

    @pytest.mark.parametrize(("protocol", "fmt"), [(ProtocolType.NAIVE, "clash"), (ProtocolType.HYSTERIA2, "v2ray")])
    def test_format_cannot_express_protocol(self, protocol: ProtocolType, fmt: str) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(
            ClientConfiguration(
                vps_id="v", protocol_type=protocol, server_address="1.2.3.4", port=443, password="pw",
            )
        )

        with pytest.raises(UnsupportedProtocolError):
            compiler.render(config.id, fmt)


class TestAppMatrix:
    def test_every_app_has_exactly_one_format(self) -> None:
        assert set(APP_PROFILES) == set(ClientAppType)
        assert sorted(a for fmt in ClientConfigFormat for a in apps_for(fmt)) == sorted(ClientAppType)

    def test_format_extensions(self) -> None:
        assert ClientConfigFormat.CLASH.extension == "yaml"
        assert ClientConfigFormat.URI_BUNDLE.extension == "txt"
        assert ClientConfigFormat.SING_BOX.extension == "json"


class TestExport:
    @pytest.mark.asyncio
    async def test_export_to_memory(self) -> None:
        sink = MemorySink()
        compiler = ConfigurationCompiler(sink=sink)
        config = compiler.add(_ss())

        location = await compiler.export_config(config.id, "sing-box")

        assert location == "memory://shadowsocks_1.2.3.4_8388.json"
        assert sink.read("shadowsocks_1.2.3.4_8388.json") == compiler.render(config.id, "sing-box")

    @pytest.mark.asyncio
    async def test_sink_failure_is_wrapped(self) -> None:
        compiler = ConfigurationCompiler()
        config = compiler.add(_ss())

        with pytest.raises(ExportFailedError, match="read-only filesystem"):
            await compiler.export_config(config.id, "clash", sink=FailingSink())

    @pytest.mark.asyncio
    async def test_render_errors_propagate_unchanged(self) -> None:
        sink = MemorySink()
        compiler = ConfigurationCompiler(sink=sink)
        config = compiler.add(_ss(method=None))

        with pytest.raises(MissingFieldError):
            await compiler.export_config(config.id, "sing-box")
        with pytest.raises(UnsupportedCombinationError):
            await compiler.export_config(compiler.add(_ss()).id, "sing-box", "stash")

        assert sink.files == {}
