"""Client application matrix: which format each app consumes, and how."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from vpstools.compiler.model import ClientAppType, ClientConfigFormat, ProtocolType
from vpstools.core.exceptions import UnsupportedCombinationError, UnsupportedProtocolError

ALL_PROTOCOLS: Final = frozenset(ProtocolType)
V2RAY_PROTOCOLS: Final = frozenset(
    {ProtocolType.SHADOWSOCKS, ProtocolType.VMESS, ProtocolType.VLESS, ProtocolType.TROJAN}
)

FORMAT_PROTOCOLS: Final = MappingProxyType({
    ClientConfigFormat.SING_BOX: ALL_PROTOCOLS,
    ClientConfigFormat.CLASH: ALL_PROTOCOLS - {ProtocolType.NAIVE},
    ClientConfigFormat.V2RAY: V2RAY_PROTOCOLS,
    ClientConfigFormat.URI_BUNDLE: ALL_PROTOCOLS,
})


@dataclass(frozen=True, slots=True)
class AppProfile:
    """Rendering quirks for one client application.

    Attributes:
        format: The only format the app imports.
        protocols: Protocols the app can dial.
        mixed_inbound: Add a local mixed (HTTP+SOCKS) inbound to sing-box output.
        base64_bundle: Deliver a URI bundle as a base64 subscription body.
    """

    format: ClientConfigFormat
    protocols: frozenset[ProtocolType] = ALL_PROTOCOLS
    mixed_inbound: bool = False
    base64_bundle: bool = False


_CLASH = AppProfile(ClientConfigFormat.CLASH, ALL_PROTOCOLS - {ProtocolType.NAIVE})
_SING_BOX = AppProfile(ClientConfigFormat.SING_BOX, mixed_inbound=True)
_V2RAY = AppProfile(ClientConfigFormat.V2RAY, V2RAY_PROTOCOLS)

APP_PROFILES: Final = MappingProxyType({
    ClientAppType.CLASH: _CLASH,
    ClientAppType.CLASH_FOR_WINDOWS: _CLASH,
    ClientAppType.CLASHX: _CLASH,
    ClientAppType.STASH: _CLASH,
    ClientAppType.SING_BOX: _SING_BOX,
    ClientAppType.HIDDIFY: _SING_BOX,
    ClientAppType.V2RAYNG: _V2RAY,
    ClientAppType.V2RAYU: _V2RAY,
    ClientAppType.SHADOWROCKET: AppProfile(ClientConfigFormat.URI_BUNDLE, base64_bundle=True),
    ClientAppType.QUANTUMULT_X: AppProfile(ClientConfigFormat.URI_BUNDLE, base64_bundle=True),
    ClientAppType.SURGE: AppProfile(ClientConfigFormat.URI_BUNDLE),
    ClientAppType.LOON: AppProfile(ClientConfigFormat.URI_BUNDLE),
})


def apps_for(fmt: ClientConfigFormat) -> list[ClientAppType]:
    return [app for app, profile in APP_PROFILES.items() if profile.format is fmt]


def resolve(
    fmt: ClientConfigFormat,
    app: ClientAppType | None,
    protocol: ProtocolType,
) -> AppProfile | None:
    """Check a (format, app, protocol) triple against the matrix.

    Returns:
        The app profile, or None when no app was requested.

    Raises:
        UnsupportedCombinationError: The app does not import ``fmt`` or
            cannot dial ``protocol``.
        UnsupportedProtocolError: ``fmt`` cannot express ``protocol``.
    """
    profile = None
    if app is not None:
        profile = APP_PROFILES[app]
        if profile.format is not fmt:
            raise UnsupportedCombinationError(
                str(fmt), str(app), f"{app} imports {profile.format} only",
            )
        if protocol not in profile.protocols:
            raise UnsupportedCombinationError(str(fmt), str(app), f"{app} cannot dial {protocol}")

    if protocol not in FORMAT_PROTOCOLS[fmt]:
        raise UnsupportedProtocolError(str(protocol), str(fmt))
    return profile
