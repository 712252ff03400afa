"""ModbusTagSource: TagSource over pymodbus TCP with a JSON register map (tag -> table, offset, kind)."""

import json
import logging
import struct
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException as PymodbusException

from .errors import BridgeConnectionError, MappingError, ShutdownError, TagReadError
from .types import Snapshot, TagValue

logger = logging.getLogger(__name__)


class ModbusTable(str, Enum):
    """Modbus table types used for pymodbus dispatch."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"
    HOLDING_REGISTER = "holding_register"


class RegisterKind(str, Enum):
    """How the raw bits/registers of a tag are decoded."""

    BOOL = "bool"
    UINT16 = "uint16"
    INT16 = "int16"
    FLOAT32 = "float32"


_BIT_TABLES = (ModbusTable.COIL, ModbusTable.DISCRETE_INPUT)


@dataclass(frozen=True)
class RegisterDef:
    """Where a tag lives on the device and how to decode it."""

    tag: str
    table: ModbusTable
    offset: int
    kind: RegisterKind

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        bit_table = self.table in _BIT_TABLES
        if bit_table != (self.kind == RegisterKind.BOOL):
            raise ValueError(f"kind {self.kind.value!r} does not fit table {self.table.value!r}")

    @property
    def count(self) -> int:
        return 2 if self.kind == RegisterKind.FLOAT32 else 1


def to_signed(value: int) -> int:
    """Convert unsigned 16-bit to signed."""
    if value > 32767:
        return value - 65536
    return value


def decode_registers(kind: RegisterKind, registers: list[int]) -> int | float:
    """Decode one uint16/int16 register, or two big-endian words as an IEEE 754 float."""
    if kind == RegisterKind.UINT16:
        return int(registers[0])
    if kind == RegisterKind.INT16:
        return to_signed(int(registers[0]))
    if kind == RegisterKind.FLOAT32:
        return struct.unpack(">f", struct.pack(">HH", registers[0], registers[1]))[0]
    raise ValueError(f"Not a register kind: {kind.value}")


def _parse_entry(raw: dict[str, Any]) -> RegisterDef:
    """Build RegisterDef from a JSON entry (tag, table, offset, kind)."""
    try:
        tag = raw["tag"]
        table_str = raw["table"]
        offset = int(raw["offset"])
    except (KeyError, TypeError, ValueError) as e:
        raise MappingError(f"Invalid register map entry {raw!r}: {e}") from None
    try:
        table = ModbusTable(table_str)
    except ValueError:
        raise MappingError(f"Unknown table {table_str!r} for tag {tag!r}", tag=tag) from None
    default_kind = "bool" if table in _BIT_TABLES else "uint16"
    kind_str = raw.get("kind", default_kind)
    try:
        kind = RegisterKind(kind_str)
    except ValueError:
        raise MappingError(f"Unknown kind {kind_str!r} for tag {tag!r}", tag=tag) from None
    try:
        return RegisterDef(tag=tag, table=table, offset=offset, kind=kind)
    except ValueError as e:
        raise MappingError(f"Invalid register for tag {tag!r}: {e}", tag=tag) from None


def load_register_map(path: str | Path) -> list[RegisterDef]:
    """Load a register map JSON file: a list (or {"entries": [...]}) of register entries."""
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise MappingError(f"Register map file not found: {p}") from None
    except json.JSONDecodeError as e:
        raise MappingError(f"Register map {p} is not valid JSON: {e}") from None
    entries = data["entries"] if isinstance(data, dict) and "entries" in data else data
    if not isinstance(entries, list):
        raise MappingError("Register map must be a JSON list or an object with 'entries'")
    if not entries:
        raise MappingError(f"Register map {p} has no entries")
    return [_parse_entry(entry) for entry in entries]


class ModbusTagSource:
    """
    Reads tags from a Modbus TCP device, one request per tag so a failing
    register only makes its own tag absent.
    """

    def __init__(
        self,
        registers: Iterable[RegisterDef],
        host: str,
        port: int = 502,
        unit_id: int = 1,
        timeout: float = 3.0,
        retries: int = 3,
    ) -> None:
        self._registers: dict[str, RegisterDef] = {}
        for reg in registers:
            if reg.tag in self._registers:
                raise MappingError(f"Duplicate tag in register map: {reg.tag}", tag=reg.tag)
            self._registers[reg.tag] = reg
        if not self._registers:
            raise ValueError("ModbusTagSource needs at least one register")
        self._host = host
        self._port = port
        self._unit_id = unit_id
        self._timeout = timeout
        self._retries = retries
        self._client: AsyncModbusTcpClient | None = None

    @property
    def name(self) -> str:
        return f"modbus://{self._host}:{self._port}/{self._unit_id}"

    @property
    def tag_ids(self) -> tuple[str, ...]:
        return tuple(self._registers)

    async def connect(self) -> None:
        """Establish TCP connection to the device."""
        if self._client is not None:
            return
        client = AsyncModbusTcpClient(
            host=self._host,
            port=self._port,
            timeout=self._timeout,
            retries=self._retries,
        )
        try:
            connected = await client.connect()
        except (PymodbusException, OSError) as e:
            raise BridgeConnectionError(
                f"Failed to connect to {self._host}:{self._port}: {e}", endpoint=self.name, cause=e
            ) from e
        if not connected:
            client.close()
            raise BridgeConnectionError(f"Failed to connect to {self._host}:{self._port}", endpoint=self.name)
        self._client = client
        logger.info("Connected to Modbus device %s", self.name)

    async def _read_one(self, client: AsyncModbusTcpClient, defn: RegisterDef) -> TagValue:
        addr = defn.offset
        count = defn.count
        try:
            if defn.table == ModbusTable.COIL:
                rr = await client.read_coils(addr, count=count, device_id=self._unit_id)
            elif defn.table == ModbusTable.DISCRETE_INPUT:
                rr = await client.read_discrete_inputs(addr, count=count, device_id=self._unit_id)
            elif defn.table == ModbusTable.INPUT_REGISTER:
                rr = await client.read_input_registers(addr, count=count, device_id=self._unit_id)
            elif defn.table == ModbusTable.HOLDING_REGISTER:
                rr = await client.read_holding_registers(addr, count=count, device_id=self._unit_id)
            else:
                raise TagReadError(defn.tag, f"Unknown table: {defn.table}")
        except PymodbusException as e:
            raise TagReadError(defn.tag, str(e), node=f"{defn.table.value}:{addr}", cause=e) from e

        node = f"{defn.table.value}:{addr}"
        if rr.isError():
            raise TagReadError(defn.tag, str(rr), node=node)
        if defn.table in _BIT_TABLES:
            bits = getattr(rr, "bits", None)
            if not bits:
                raise TagReadError(defn.tag, "Empty bit response", node=node)
            return TagValue.integer(int(bool(bits[0])))
        registers = getattr(rr, "registers", None)
        if not registers or len(registers) < count:
            raise TagReadError(defn.tag, "Short register response", node=node)
        return TagValue.from_python(decode_registers(defn.kind, list(registers)))

    async def read_all(self) -> Snapshot:
        client = self._client
        if client is None or not client.connected:
            raise BridgeConnectionError(f"Modbus connection to {self.name} lost", endpoint=self.name)
        values: dict[str, TagValue] = {}
        errors: dict[str, TagReadError] = {}
        for tag, defn in self._registers.items():
            try:
                values[tag] = await self._read_one(client, defn)
            except TagReadError as e:
                logger.warning("Tag %s unreadable: %s", tag, e)
                values[tag] = TagValue.absent()
                errors[tag] = e
        return Snapshot(values=values, errors=errors)

    async def disconnect(self) -> ShutdownError | None:
        """Close the TCP connection."""
        client, self._client = self._client, None
        if client is None:
            return None
        try:
            client.close()
        except Exception as e:
            return ShutdownError(self.name, f"Error closing Modbus client: {e}", cause=e)
        logger.info("Disconnected from Modbus device %s", self.name)
        return None
