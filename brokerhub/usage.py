"""Per-contract traffic meters with approximate unique-device counting."""

from __future__ import annotations

import base64
import hashlib
import math
import struct
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Set, Union

_PRECISION = 14
_REGISTERS = 1 << _PRECISION
_SPARSE_LIMIT = _REGISTERS // 4
_VALUE_BITS = 64 - _PRECISION
_MAX_RANK = _VALUE_BITS + 1
_FORMAT_VERSION = 1
_SPARSE, _DENSE = 0, 1


def _hash(item: bytes) -> int:
    return int.from_bytes(hashlib.blake2b(item, digest_size=8).digest(), "big")


class HyperLogLog:
    """Cardinality sketch: exact while small, approximate once dense."""

    def __init__(self) -> None:
        self._sparse: Optional[Set[int]] = set()
        self._registers: Optional[bytearray] = None

    def insert(self, item: Union[bytes, str]) -> None:
        """Record one item."""
        if isinstance(item, str):
            item = item.encode("utf-8")
        self._add_hash(_hash(item))

    def _add_hash(self, value: int) -> None:
        if self._sparse is not None:
            self._sparse.add(value)
            if len(self._sparse) > _SPARSE_LIMIT:
                self._densify()
            return
        assert self._registers is not None
        index = value >> _VALUE_BITS
        rest = value & ((1 << _VALUE_BITS) - 1)
        rank = _VALUE_BITS - rest.bit_length() + 1
        if rank > self._registers[index]:
            self._registers[index] = rank

    def _densify(self) -> None:
        if self._sparse is None:
            return
        hashes, self._sparse = self._sparse, None
        self._registers = bytearray(_REGISTERS)
        for value in hashes:
            self._add_hash(value)

    def estimate(self) -> int:
        """Return the estimated number of distinct items."""
        if self._sparse is not None:
            return len(self._sparse)
        assert self._registers is not None
        m = _REGISTERS
        alpha = 0.7213 / (1 + 1.079 / m)
        harmonic = sum(2.0 ** -rank for rank in self._registers)
        raw = alpha * m * m / harmonic
        zeros = self._registers.count(0)
        if raw <= 2.5 * m and zeros:
            raw = m * math.log(m / zeros)
        return int(round(raw))

    def merge(self, other: "HyperLogLog") -> None:
        """Fold another sketch into this one."""
        if self._sparse is not None and other._sparse is not None:
            self._sparse |= other._sparse
            if len(self._sparse) > _SPARSE_LIMIT:
                self._densify()
            return
        self._densify()
        if other._sparse is not None:
            for value in other._sparse:
                self._add_hash(value)
        else:
            assert self._registers is not None and other._registers is not None
            self._registers = bytearray(map(max, self._registers, other._registers))

    def to_bytes(self) -> bytes:
        """Serialise the sketch."""
        if self._sparse is not None:
            hashes = sorted(self._sparse)
            return (
                bytes([_FORMAT_VERSION, _PRECISION, _SPARSE])
                + struct.pack(">I", len(hashes))
                + b"".join(value.to_bytes(8, "big") for value in hashes)
            )
        assert self._registers is not None
        return bytes([_FORMAT_VERSION, _PRECISION, _DENSE]) + bytes(self._registers)

    @classmethod
    def from_bytes(cls, data: bytes) -> "HyperLogLog":
        """Restore a sketch written by :meth:`to_bytes`."""
        if len(data) < 3:
            raise ValueError("sketch data is too short")
        version, precision, mode = data[0], data[1], data[2]
        if version != _FORMAT_VERSION:
            raise ValueError(f"unsupported sketch version {version}")
        if precision != _PRECISION:
            raise ValueError(f"unsupported sketch precision {precision}")
        body = data[3:]
        sketch = cls()
        if mode == _SPARSE:
            if len(body) < 4:
                raise ValueError("sparse sketch is missing its length")
            (count,) = struct.unpack(">I", body[:4])
            hashes = body[4:]
            if len(hashes) != count * 8:
                raise ValueError("sparse sketch length does not match its contents")
            for offset in range(0, len(hashes), 8):
                sketch._add_hash(int.from_bytes(hashes[offset:offset + 8], "big"))
        elif mode == _DENSE:
            if len(body) != _REGISTERS:
                raise ValueError("dense sketch has the wrong number of registers")
            if max(body) > _MAX_RANK:
                raise ValueError("dense sketch holds an impossible register value")
            sketch._sparse = None
            sketch._registers = bytearray(body)
        else:
            raise ValueError(f"unknown sketch mode {mode}")
        return sketch


@dataclass(frozen=True)
class EncodedUsage:
    """A snapshot of a meter, ready to be sent elsewhere."""

    contract: int
    message_in: int = 0
    traffic_in: int = 0
    message_eg: int = 0
    traffic_eg: int = 0
    devices: bytes = b""

    def to_usage(self) -> "Meter":
        """Rebuild a live meter from this snapshot."""
        meter = Meter(self.contract)
        meter.message_in = self.message_in
        meter.traffic_in = self.traffic_in
        meter.message_eg = self.message_eg
        meter.traffic_eg = self.traffic_eg
        try:
            meter.devices = HyperLogLog.from_bytes(self.devices)
        except ValueError:
            meter.devices = HyperLogLog()
        return meter

    def to_dict(self) -> Dict[str, object]:
        """Return a JSON-friendly mapping of the snapshot."""
        return {
            "contract": self.contract,
            "message_in": self.message_in,
            "traffic_in": self.traffic_in,
            "message_eg": self.message_eg,
            "traffic_eg": self.traffic_eg,
            "devices": base64.b64encode(self.devices).decode("ascii"),
        }


class Meter:
    """Tracks incoming and outgoing traffic and devices of one contract."""

    def __init__(self, contract: int) -> None:
        self.contract = contract
        self.message_in = 0
        self.traffic_in = 0
        self.message_eg = 0
        self.traffic_eg = 0
        self.devices = HyperLogLog()
        self._lock = threading.Lock()

    def add_ingress(self, size: int) -> None:
        """Record one incoming message of ``size`` bytes."""
        with self._lock:
            self.message_in += 1
            self.traffic_in += size

    def add_egress(self, size: int) -> None:
        """Record one outgoing message of ``size`` bytes."""
        with self._lock:
            self.message_eg += 1
            self.traffic_eg += size

    def add_device(self, addr: str) -> None:
        """Record a device address."""
        with self._lock:
            self.devices.insert(addr)

    def device_count(self) -> int:
        """Return the estimated number of distinct devices."""
        with self._lock:
            return self.devices.estimate()

    def reset(self) -> EncodedUsage:
        """Zero the meter and return what it held."""
        with self._lock:
            old = EncodedUsage(
                contract=self.contract,
                message_in=self.message_in,
                traffic_in=self.traffic_in,
                message_eg=self.message_eg,
                traffic_eg=self.traffic_eg,
                devices=self.devices.to_bytes(),
            )
            self.message_in = self.traffic_in = 0
            self.message_eg = self.traffic_eg = 0
            self.devices = HyperLogLog()
        return old

    def merge(self, other: "Meter") -> None:
        """Add another meter's counts and devices into this one."""
        with other._lock:
            counts = (other.message_in, other.traffic_in, other.message_eg, other.traffic_eg)
            devices = HyperLogLog.from_bytes(other.devices.to_bytes())
        with self._lock:
            self.devices.merge(devices)
            self.message_in += counts[0]
            self.traffic_in += counts[1]
            self.message_eg += counts[2]
            self.traffic_eg += counts[3]