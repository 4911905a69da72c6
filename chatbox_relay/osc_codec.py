# osc_codec.py  (OSC wire format for the VRChat chatbox / MuteSelf subset)
from typing import Optional, Tuple

from pythonosc.osc_message import OscMessage, ParseError
from pythonosc.osc_message_builder import OscMessageBuilder, BuildError

from .errors import MalformedPacket

# =========================
# Addresses
# =========================
CHATBOX_INPUT_ADDRESS = "/chatbox/input"
CHATBOX_TYPING_ADDRESS = "/chatbox/typing"
MUTE_SELF_ADDRESS = "/avatar/parameters/MuteSelf"


# =========================
# Encode
# =========================
def build_chatbox_input(text: str, typing: bool = True) -> OscMessage:
    """/chatbox/input  ,sT | ,sF  (string + bool)"""
    builder = OscMessageBuilder(address=CHATBOX_INPUT_ADDRESS)
    builder.add_arg(text, OscMessageBuilder.ARG_TYPE_STRING)
    builder.add_arg(bool(typing))
    try:
        return builder.build()
    except BuildError as exc:
        raise MalformedPacket(f"cannot encode chatbox text: {exc}") from exc


def build_typing(is_typing: bool) -> OscMessage:
    """/chatbox/typing  ,T | ,F  (no string payload)"""
    builder = OscMessageBuilder(address=CHATBOX_TYPING_ADDRESS)
    builder.add_arg(bool(is_typing))
    return builder.build()


def encode_chatbox_input(text: str, typing: bool = True) -> bytes:
    return build_chatbox_input(text, typing).dgram


def encode_typing(is_typing: bool) -> bytes:
    return build_typing(is_typing).dgram


# =========================
# Decode (lenient, MuteSelf only needs one bool)
# =========================
def align4(offset: int) -> int:
    return (offset + 3) & ~3


def decode_address(data: bytes) -> Tuple[str, int]:
    """
    Returns (address, offset of the address terminator).
    No length prefix in OSC, so the first NUL marks the end.
    """
    if len(data) < 4:
        raise MalformedPacket(f"datagram too short ({len(data)} bytes)")

    end = data.find(b"\x00")
    if end < 0:
        raise MalformedPacket("address is not NUL-terminated")

    try:
        address = data[:end].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedPacket(f"address is not valid UTF-8: {exc}") from exc
    return address, end


def decode_bool_arg_after_address(data: bytes, address_end: int) -> bool:
    """
    Skips the address padding and peeks at (at most) 4 bytes of the type-tag block.
    'T' anywhere in there -> True, 'F' -> False. Anything else is malformed.
    """
    type_tag_start = align4(address_end + 1)
    if type_tag_start >= len(data):
        raise MalformedPacket("type-tag block missing")

    block = data[type_tag_start:type_tag_start + 4]
    if b"T" in block:
        return True
    if b"F" in block:
        return False
    raise MalformedPacket(f"no bool type tag in {block!r}")


def parse_mute_self(data: bytes) -> Optional[bool]:
    """Mute flag if `data` is a MuteSelf message, None for any other address."""
    address, end = decode_address(data)
    if address != MUTE_SELF_ADDRESS:
        return None
    return decode_bool_arg_after_address(data, end)


def decode_message(data: bytes) -> Tuple[str, list]:
    """Full parse (address, params) via python-osc, for diagnostics and tests."""
    try:
        msg = OscMessage(data)
    except ParseError as exc:
        raise MalformedPacket(str(exc)) from exc
    return msg.address, list(msg.params)
