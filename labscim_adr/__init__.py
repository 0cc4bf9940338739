# Init du package LabSCim ADR
from .adr import (
    AdrRequest,
    AdrResponse,
    InsufficientMatchingHistory,
    LabSCimHandler,
    UplinkRecord,
    handle,
)
from .channel import Channel
from .node import Node
from .registry import ADR_HANDLERS, get_handler
from .server import NetworkServer
from .simulator import Simulator
from .lorawan import LoRaWANFrame, LinkADRReq, LinkADRAns

__all__ = [
    "AdrRequest",
    "AdrResponse",
    "InsufficientMatchingHistory",
    "LabSCimHandler",
    "UplinkRecord",
    "handle",
    "Channel",
    "Node",
    "ADR_HANDLERS",
    "get_handler",
    "NetworkServer",
    "Simulator",
    "LoRaWANFrame",
    "LinkADRReq",
    "LinkADRAns",
]
