#!/usr/bin/env python3
"""
Node State Decoders

Turn a raw status response body into NodeState records. One decoder exists
per payload format; the deployment picks one with ALEO_RPC_FORMAT.

Both decoders flatten the payload into plain dicts first and share the same
field mapping, so JSON and XML deployments expose identical metrics.
"""

import json
import re
import sys
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple

from .errors import DecodeError, UpstreamError
from .state import BLOCKS_MINED_THRESHOLD, NodeState

# NodeState field -> accepted payload keys, first match wins
FIELD_ALIASES = {
    'node_type': ('type', 'node_type'),
    'status': ('status',),
    'connected_sync_nodes': ('number_of_connected_sync_nodes', 'connected_sync_nodes'),
    'connected_peers': ('number_of_connected_peers', 'connected_peers'),
    'candidate_peers': ('number_of_candidate_peers', 'candidate_peers'),
    'cumulative_weight': ('latest_cumulative_weight', 'cumulative_weight'),
    'latest_block_height': ('latest_block_height',),
}

# Fields that may arrive either as a count or as the list being counted
COUNTABLE_FIELDS = {'connected_sync_nodes', 'connected_peers', 'candidate_peers'}

_INT_RE = re.compile(r'^[+-]?\d+$')
_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')


def _lookup(fields: Dict[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in fields:
            return fields[key]
    raise DecodeError(f"missing field '{FIELD_ALIASES[name][0]}'")


def _as_int(value: Any, name: str) -> int:
    """Parse an integer field, rejecting bools and fractional numbers"""
    if isinstance(value, bool):
        raise DecodeError(f"field '{name}' is a boolean, expected an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str) and _INT_RE.match(value.strip()):
        try:
            value = int(value.strip())
        except ValueError:
            # Longer than the interpreter's int string limit
            raise DecodeError(f"field '{name}' is out of range") from None
    elif not isinstance(value, int):
        raise DecodeError(f"field '{name}' is not an integer: {value!r}")
    # Gauges are floats
    if abs(value) > sys.float_info.max:
        raise DecodeError(f"field '{name}' is out of range")
    return value


def _as_str(value: Any, name: str) -> str:
    if isinstance(value, (dict, list)) or value is None:
        raise DecodeError(f"field '{name}' is not a string: {value!r}")
    text = str(value).strip()
    if not text:
        raise DecodeError(f"field '{name}' is empty")
    return text


def _split_blocks_mined(fields: Dict[str, Any]) -> Tuple[int, int]:
    """
    Return (before, after) threshold counts.

    ``blocks_mined`` is either the list of mined block heights, or the count
    of blocks mined after the threshold with ``blocks_mined_calibrate``
    holding the count before it.
    """
    if 'blocks_mined' not in fields:
        raise DecodeError("missing field 'blocks_mined'")
    mined = fields['blocks_mined']
    if mined == '':
        # <blocksMined/> in XML
        mined = []

    if isinstance(mined, list):
        heights = [_as_int(height, 'blocks_mined') for height in mined]
        before = sum(1 for height in heights if height < BLOCKS_MINED_THRESHOLD)
        return before, len(heights) - before

    after = _as_int(mined, 'blocks_mined')
    before = _as_int(fields.get('blocks_mined_calibrate', 0), 'blocks_mined_calibrate')
    return before, after


def build_node_state(fields: Dict[str, Any], channel: Optional[str] = None) -> NodeState:
    """Build a NodeState from flattened payload fields or raise DecodeError"""
    if not isinstance(fields, dict):
        raise DecodeError(f"node state must be an object, got {type(fields).__name__}")

    counts = {}
    for name in ('connected_sync_nodes', 'connected_peers', 'candidate_peers',
                 'cumulative_weight', 'latest_block_height'):
        value = _lookup(fields, name)
        if name in COUNTABLE_FIELDS and isinstance(value, list):
            counts[name] = len(value)
        else:
            counts[name] = _as_int(value, name)

    before, after = _split_blocks_mined(fields)

    return NodeState(
        node_type=_as_str(_lookup(fields, 'node_type'), 'type'),
        status=_as_str(_lookup(fields, 'status'), 'status'),
        blocks_mined_before_threshold=before,
        blocks_mined_after_threshold=after,
        channel=channel,
        **counts
    )


class StateDecoder:
    """Decoder interface: ``decode(body) -> tuple of NodeState``"""

    name = ''

    def decode(self, body: bytes) -> Tuple[NodeState, ...]:
        raise NotImplementedError


class JsonStateDecoder(StateDecoder):
    """
    Decode JSON status payloads.

    Accepts a bare object or a JSON-RPC 2.0 envelope. A ``channels`` member
    (mapping of name to state, or list of states carrying ``channel``/``name``)
    yields one NodeState per channel.
    """

    name = 'json'

    def decode(self, body: bytes) -> Tuple[NodeState, ...]:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError, RecursionError) as e:
            raise DecodeError(f"invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise DecodeError(f"expected a JSON object, got {type(payload).__name__}")

        if 'jsonrpc' in payload:
            if payload.get('error') is not None:
                error = payload['error']
                message = error.get('message') if isinstance(error, dict) else str(error)
                # The transport succeeded, the node refused the call
                raise UpstreamError(200, f"JSON-RPC error: {message}")
            if 'result' not in payload:
                raise DecodeError("JSON-RPC response has neither result nor error")
            payload = payload['result']
            if not isinstance(payload, dict):
                raise DecodeError(f"JSON-RPC result is not an object: {type(payload).__name__}")

        if 'channels' not in payload:
            return (build_node_state(payload),)

        channels = payload['channels']
        if isinstance(channels, dict):
            items = list(channels.items())
        elif isinstance(channels, list):
            items = []
            for entry in channels:
                if not isinstance(entry, dict):
                    raise DecodeError("channel entry is not an object")
                name = entry.get('channel', entry.get('name'))
                if name is None:
                    raise DecodeError("channel entry has no 'channel' or 'name' key")
                items.append((name, entry))
        else:
            raise DecodeError("'channels' must be an object or a list")

        if not items:
            raise DecodeError("payload declares no channels")
        return tuple(build_node_state(fields, _as_str(name, 'channel')) for name, fields in items)


def _snake(tag: str) -> str:
    return _CAMEL_RE.sub('_', tag).lower()


def _element_fields(element: ET.Element) -> Dict[str, Any]:
    """Flatten child elements into a dict; nested children become a list of texts"""
    fields: Dict[str, Any] = {}
    for child in element:
        if len(child):
            fields[_snake(child.tag)] = [(item.text or '').strip() for item in child]
        else:
            fields[_snake(child.tag)] = (child.text or '').strip()
    return fields


class XmlStateDecoder(StateDecoder):
    """
    Decode XML status payloads.

    A root whose children are ``<channel>`` elements is channelized; each
    channel is named by its ``name`` attribute or a ``<name>`` child.
    """

    name = 'xml'

    def decode(self, body: bytes) -> Tuple[NodeState, ...]:
        try:
            root = ET.fromstring(body)
        except ET.ParseError as e:
            raise DecodeError(f"invalid XML: {e}") from e

        channels = [child for child in root if _snake(child.tag) == 'channel']
        if not channels:
            return (build_node_state(_element_fields(root)),)

        states: List[NodeState] = []
        for element in channels:
            fields = _element_fields(element)
            name = element.get('name') or fields.pop('name', None)
            if not name:
                raise DecodeError("channel element has no name")
            states.append(build_node_state(fields, _as_str(name, 'channel')))
        return tuple(states)


DECODERS = {
    JsonStateDecoder.name: JsonStateDecoder,
    XmlStateDecoder.name: XmlStateDecoder,
}


def get_decoder(payload_format: str) -> StateDecoder:
    """Return a decoder instance for a configured payload format"""
    try:
        return DECODERS[payload_format.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown payload format '{payload_format}' (expected one of: {', '.join(sorted(DECODERS))})"
        ) from None
