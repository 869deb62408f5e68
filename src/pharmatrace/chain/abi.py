"""Decode contract logs against a compiled ABI artifact.

Only the ABI types the batch-lifecycle contract emits are supported:
``uintN``, ``intN``, ``address``, ``bool``, ``bytesN``, ``string`` and
``bytes``. Indexed dynamic values arrive as their keccak hash and are kept
as hex.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from Crypto.Hash import keccak

from pharmatrace.common.exceptions import AbiDecodeError

WORD = 32


def event_topic(signature: str) -> str:
    """Return topic0 for an event signature such as ``Transfer(address,address,uint256)``."""
    return "0x" + keccak.new(digest_bits=256, data=signature.encode("utf-8")).hexdigest()


def _strip_hex(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in ("string", "bytes")


def _check_supported(abi_type: str) -> None:
    if "[" in abi_type or abi_type.startswith("tuple"):
        raise AbiDecodeError(f"Unsupported ABI type: {abi_type}")


def _decode_word(abi_type: str, word: bytes) -> Any:
    if abi_type == "address":
        return "0x" + word[-20:].hex()
    if abi_type == "bool":
        return int.from_bytes(word, "big") != 0
    if abi_type.startswith("uint"):
        return int.from_bytes(word, "big")
    if abi_type.startswith("int"):
        return int.from_bytes(word, "big", signed=True)
    if abi_type.startswith("bytes"):
        size = int(abi_type[5:])
        return "0x" + word[:size].hex()
    raise AbiDecodeError(f"Unsupported ABI type: {abi_type}")


def _decode_dynamic(abi_type: str, data: bytes, offset: int) -> Any:
    length_word = data[offset:offset + WORD]
    if len(length_word) < WORD:
        raise AbiDecodeError(f"Truncated {abi_type} at offset {offset}")
    length = int.from_bytes(length_word, "big")
    start = offset + WORD
    raw = data[start:start + length]
    if len(raw) < length:
        raise AbiDecodeError(f"Truncated {abi_type} payload at offset {offset}")
    if abi_type == "string":
        return raw.decode("utf-8", errors="replace")
    return "0x" + raw.hex()


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: tuple[EventInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @property
    def topic(self) -> str:
        return event_topic(self.signature)


class ContractEventDecoder:
    """Maps topic0 to event specs and decodes raw JSON-RPC logs."""

    def __init__(self, abi: list[dict[str, Any]]):
        self._by_topic: dict[str, EventSpec] = {}
        for entry in abi:
            if entry.get("type") != "event" or entry.get("anonymous"):
                continue
            spec = EventSpec(
                name=entry["name"],
                inputs=tuple(
                    EventInput(
                        name=item.get("name", ""),
                        type=item["type"],
                        indexed=bool(item.get("indexed", False)),
                    )
                    for item in entry.get("inputs", [])
                ),
            )
            self._by_topic[spec.topic] = spec

    @classmethod
    def from_artifact(cls, path: str | Path) -> "ContractEventDecoder":
        """Load a Hardhat artifact (``{"abi": [...]}``) or a bare ABI list."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        abi = raw["abi"] if isinstance(raw, dict) else raw
        return cls(abi)

    @property
    def event_names(self) -> list[str]:
        return sorted(spec.name for spec in self._by_topic.values())

    def decode(self, log: dict[str, Any]) -> Optional[tuple[str, dict[str, Any]]]:
        """Return ``(event_name, args)`` or None when topic0 is not in the ABI."""
        topics = log.get("topics") or []
        if not topics:
            return None
        spec = self._by_topic.get(topics[0].lower())
        if spec is None:
            return None

        data = bytes.fromhex(_strip_hex(log.get("data") or "0x"))
        indexed_topics = iter(topics[1:])
        args: dict[str, Any] = {}
        head = 0

        for item in spec.inputs:
            _check_supported(item.type)
            if item.indexed:
                topic = next(indexed_topics, None)
                if topic is None:
                    raise AbiDecodeError(f"{spec.name}: missing topic for '{item.name}'")
                raw = bytes.fromhex(_strip_hex(topic))
                if _is_dynamic(item.type):
                    args[item.name] = "0x" + raw.hex()
                else:
                    args[item.name] = _decode_word(item.type, raw)
                continue

            word = data[head:head + WORD]
            if len(word) < WORD:
                raise AbiDecodeError(f"{spec.name}: data too short for '{item.name}'")
            if _is_dynamic(item.type):
                args[item.name] = _decode_dynamic(item.type, data, int.from_bytes(word, "big"))
            else:
                args[item.name] = _decode_word(item.type, word)
            head += WORD

        return spec.name, args
