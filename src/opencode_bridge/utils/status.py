"""
Status and event formatting for the OpenCode bridge CLI.
"""

import json

from opencode_bridge.sse import SSEEvent


def format_status_message(
    *,
    running: bool,
    base_url: str,
    version: str | None = None,
    managed_by_us: bool = False,
    pid: int | None = None,
    auto_serve: bool | None = None,
) -> str:
    """
    Format OpenCode server status with consistent styling.

    Args:
        running: Whether the server answered its health check
        base_url: Server base URL
        version: Version reported by the server
        managed_by_us: Whether this process spawned the server
        pid: PID of the managed server process
        auto_serve: Whether auto-start is enabled

    Returns:
        Formatted status message string
    """
    lines = []

    lines.append("=" * 70)
    lines.append("OPENCODE SERVER STATUS")
    lines.append("=" * 70)
    lines.append("")

    if running:
        status_line = "Status: Running"
        if version:
            status_line += f" (v{version})"
        lines.append(status_line)
        if managed_by_us:
            managed_line = "  Managed by opencode-bridge"
            if pid:
                managed_line += f" (PID: {pid})"
            lines.append(managed_line)
    else:
        lines.append("Status: Not reachable")

    lines.append("")
    lines.append("Server Configuration:")
    lines.append(f"  URL: {base_url}")
    if auto_serve is not None:
        lines.append(f"  Auto-start: {'enabled' if auto_serve else 'disabled'}")
    lines.append("")

    lines.append("=" * 70)

    return "\n".join(lines)


def format_event(event: SSEEvent) -> str:
    """Render an event as ``[name] data``, pretty-printing JSON payloads."""
    try:
        parsed = json.loads(event.data)
    except json.JSONDecodeError:
        return f"[{event.event}] {event.data}"
    return f"[{event.event}] {json.dumps(parsed, indent=2)}"
