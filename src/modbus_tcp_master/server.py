"""MCP server entry point for the Modbus TCP master.

Exposes the master's operations as tools, plus a few resources, via the
Model Context Protocol using the official Python MCP SDK with stdio
transport. Connection defaults come from ``MODBUS_*`` environment variables
(see :class:`~modbus_tcp_master.config.ServerSettings`).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import ConfigError, ServerSettings
from .errors import ErrorKind, Result
from .master import ModbusMaster
from .protocol.functions import (
    MAX_READ_BITS,
    MAX_READ_REGISTERS,
    MAX_WRITE_COILS,
    MAX_WRITE_REGISTERS,
    ExceptionCode,
    FunctionCode,
)

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "modbus-tcp-master",
    instructions="MCP server that reads and writes Modbus TCP coils and registers",
)

# Global connection state
_settings: ServerSettings = ServerSettings()
_master: ModbusMaster | None = None
_last_transaction_id = 0


def _get_master() -> ModbusMaster | None:
    """Get the active master, or None before the first successful 'connect'."""
    return _master


def _not_connected() -> dict[str, Any]:
    return {
        "error": "Not connected to a Modbus server. Use the 'connect' tool first.",
        "kind": ErrorKind.CONNECTION.value,
    }


def _next_transaction_id(requested: int | None = None) -> int:
    """Use the caller's transaction ID, or allocate the next one (1-65535)."""
    global _last_transaction_id
    if requested is not None:
        return requested
    _last_transaction_id = _last_transaction_id % 0xFFFF + 1
    return _last_transaction_id


def _report(result: Result, transaction_id: int, **fields: Any) -> dict[str, Any]:
    """Turn a master result into a tool response dictionary."""
    if not result.ok:
        report: dict[str, Any] = {
            "transaction_id": transaction_id,
            "error": str(result.error),
            "kind": result.kind.value,
        }
        exception_code = getattr(result.error, "exception_code", None)
        if exception_code is not None:
            report["exception_code"] = exception_code
        return report
    return {"transaction_id": transaction_id, **fields, "value": result.value}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(
    host: str | None = None,
    port: int | None = None,
    unit_id: int | None = None,
) -> dict[str, Any]:
    """Open a TCP connection to a Modbus server.

    Args:
        host: Server address; defaults to MODBUS_HOST.
        port: TCP port; defaults to MODBUS_PORT or 502.
        unit_id: Unit identifier; defaults to MODBUS_UNIT_ID or 1.
    """
    global _master
    if _master is not None and _master.connected and not _master.session.desynchronized:
        return {
            "connected": True,
            "message": "Already connected",
            "endpoint": str(_master.endpoint),
        }
    if _master is not None:
        # dropped or desynchronized; release its stream before replacing it
        await _master.disconnect()
        _master = None

    try:
        endpoint = _settings.endpoint(host=host, port=port, unit_id=unit_id)
    except ConfigError as e:
        return {"connected": False, "error": str(e)}

    master = ModbusMaster.from_endpoint(endpoint)
    result = await master.connect()
    if not result.ok:
        return {"connected": False, "error": str(result.error), "kind": result.kind.value}

    _master = master
    return {"connected": True, "endpoint": str(endpoint)}


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the connection to the Modbus server."""
    global _master
    if _master is None:
        return {"disconnected": True}
    await _master.disconnect()
    _master = None
    return {"disconnected": True}


# ─── READ TOOLS ───────────────────────────────────────────────────────

@mcp.tool()
async def read_coils(
    start_address: int, quantity: int, transaction_id: int | None = None
) -> dict[str, Any]:
    """Read coil states (function 0x01).

    Args:
        start_address: First coil address (0-65535).
        quantity: Number of coils (1-2000).
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.read_coils(tid, start_address, quantity)
    return _report(result, tid, start_address=start_address)


@mcp.tool()
async def read_discrete_inputs(
    start_address: int, quantity: int, transaction_id: int | None = None
) -> dict[str, Any]:
    """Read discrete input states (function 0x02).

    Args:
        start_address: First input address (0-65535).
        quantity: Number of inputs (1-2000).
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.read_discrete_inputs(tid, start_address, quantity)
    return _report(result, tid, start_address=start_address)


@mcp.tool()
async def read_holding_registers(
    start_address: int, quantity: int, transaction_id: int | None = None
) -> dict[str, Any]:
    """Read holding registers (function 0x03).

    Args:
        start_address: First register address (0-65535).
        quantity: Number of registers (1-125).
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.read_holding_registers(tid, start_address, quantity)
    return _report(result, tid, start_address=start_address)


@mcp.tool()
async def read_input_registers(
    start_address: int, quantity: int, transaction_id: int | None = None
) -> dict[str, Any]:
    """Read input registers (function 0x04)."""
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.read_input_registers(tid, start_address, quantity)
    return _report(result, tid, start_address=start_address)


# ─── WRITE TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
async def write_single_coil(
    address: int, value: bool, transaction_id: int | None = None
) -> dict[str, Any]:
    """Switch a single coil ON or OFF (function 0x05).

    Args:
        address: Coil address (0-65535).
        value: True for ON, False for OFF.
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.write_single_coil(tid, address, value)
    return _report(result, tid, address=address)


@mcp.tool()
async def write_single_register(
    address: int, value: int, transaction_id: int | None = None
) -> dict[str, Any]:
    """Write a single holding register (function 0x06).

    Args:
        address: Register address (0-65535).
        value: Register value (0-65535).
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.write_single_register(tid, address, value)
    return _report(result, tid, address=address)


@mcp.tool()
async def write_multiple_coils(
    start_address: int, values: list[bool], transaction_id: int | None = None
) -> dict[str, Any]:
    """Write consecutive coils (function 0x0F).

    Args:
        start_address: Address of the first coil.
        values: 1-2000 coil states.
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.write_multiple_coils(tid, start_address, values)
    return _report(result, tid, start_address=start_address, quantity=len(values))


@mcp.tool()
async def write_multiple_registers(
    start_address: int, values: list[int], transaction_id: int | None = None
) -> dict[str, Any]:
    """Write consecutive holding registers (function 0x10).

    Args:
        start_address: Address of the first register.
        values: 1-125 register values, each 0-65535.
        transaction_id: Optional explicit transaction ID.
    """
    master = _get_master()
    if master is None:
        return _not_connected()
    tid = _next_transaction_id(transaction_id)
    result = await master.write_multiple_registers(tid, start_address, values)
    return _report(result, tid, start_address=start_address, quantity=len(values))


# ─── RESOURCES ────────────────────────────────────────────────────────

@mcp.resource("modbus://connection/status")
def resource_connection_status() -> str:
    """Current connection state."""
    if _master is None:
        return json.dumps({"connected": False})
    return json.dumps({
        "connected": _master.connected,
        "endpoint": str(_master.endpoint),
        "desynchronized": _master.session.desynchronized,
        "busy": _master.session.busy,
    })


@mcp.resource("modbus://catalog/function-codes")
def resource_function_codes() -> str:
    """Supported function codes and their quantity limits."""
    limits = {
        FunctionCode.READ_COILS: MAX_READ_BITS,
        FunctionCode.READ_DISCRETE_INPUTS: MAX_READ_BITS,
        FunctionCode.READ_HOLDING_REGISTERS: MAX_READ_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS: MAX_READ_REGISTERS,
        FunctionCode.WRITE_MULTIPLE_COILS: MAX_WRITE_COILS,
        FunctionCode.WRITE_MULTIPLE_REGISTERS: MAX_WRITE_REGISTERS,
    }
    return json.dumps([
        {"code": int(fc), "name": fc.name, "max_quantity": limits.get(fc, 1)}
        for fc in FunctionCode
    ], indent=2)


@mcp.resource("modbus://catalog/exception-codes")
def resource_exception_codes() -> str:
    """Exception codes a server may answer with."""
    return json.dumps(
        [{"code": int(ec), "name": ec.name} for ec in ExceptionCode], indent=2
    )


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    global _settings
    _settings = ServerSettings.from_env()
    logging.basicConfig(level=_settings.log_level)
    logger.info("Starting Modbus TCP master MCP server")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
