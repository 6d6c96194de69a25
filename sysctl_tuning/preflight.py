"""
Preflight validation for sysctl-tuning inputs.

Checks the raw memory, bandwidth and RTT values coming from the command line
or the interactive prompt before anything touches the host:
- Values must be numeric (bandwidth a whole number)
- Values must fall inside the supported ranges
- Every problem is reported at once, not just the first

On success the validated TuningInputs are returned in ``data['inputs']``.
"""

from decimal import Decimal, InvalidOperation

from sysctl_tuning.models import Aggressiveness, TuningInputs

MEMORY_RANGE_GIB = (Decimal('0.1'), Decimal('1024'))
BANDWIDTH_RANGE_MBPS = (1, 100000)
RTT_RANGE_MS = (Decimal('1'), Decimal('10000'))


def _parse_decimal(name, raw, errors):
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        errors.append(f"{name}: missing value")
        return None
    if isinstance(raw, bool):
        errors.append(f"{name}: must be numeric, got {raw!r}")
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        errors.append(f"{name}: must be numeric, got {raw!r}")
        return None
    if not value.is_finite():
        errors.append(f"{name}: must be a finite number, got {raw!r}")
        return None
    return value


def _parse_int(name, raw, errors):
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        errors.append(f"{name}: missing value")
        return None
    if isinstance(raw, bool):
        errors.append(f"{name}: must be a whole number, got {raw!r}")
        return None
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not text.isdigit():
        errors.append(f"{name}: must be a whole number, got {raw!r}")
        return None
    return int(text)


def _check_range(name, value, bounds, unit, errors):
    lower, upper = bounds
    if value is not None and not (lower <= value <= upper):
        errors.append(f"{name}: out of range ({lower}-{upper} {unit}): {value}")


def main(memory_gib=None, bandwidth_mbps=None, rtt_ms=None, aggressiveness='conservative'):
    """
    Validate tuning inputs.

    Args:
        memory_gib: Host memory in GiB
        bandwidth_mbps: Link bandwidth in Mbps
        rtt_ms: Round-trip latency in milliseconds
        aggressiveness: 'conservative' or 'aggressive'

    Returns:
        dict with result status and either the validated inputs or error details
    """
    errors = []

    try:
        memory = _parse_decimal('memory_gib', memory_gib, errors)
        bandwidth = _parse_int('bandwidth_mbps', bandwidth_mbps, errors)
        rtt = _parse_decimal('rtt_ms', rtt_ms, errors)

        _check_range('memory_gib', memory, MEMORY_RANGE_GIB, 'GiB', errors)
        _check_range('bandwidth_mbps', bandwidth, BANDWIDTH_RANGE_MBPS, 'Mbps', errors)
        _check_range('rtt_ms', rtt, RTT_RANGE_MS, 'ms', errors)

        mode = None
        try:
            mode = Aggressiveness(str(getattr(aggressiveness, 'value', aggressiveness)).lower())
        except ValueError:
            errors.append(
                f"aggressiveness: unsupported mode {aggressiveness!r}. "
                f"Supported: {', '.join(m.value for m in Aggressiveness)}"
            )

        if errors:
            error_msg = "Preflight validation failed:\n" + "\n".join(f"  - {err}" for err in errors)
            return {
                "result": "FAILURE",
                "error": error_msg
            }

        return {
            "result": "SUCCESS",
            "data": {
                "message": "Preflight validation passed",
                "inputs": TuningInputs(memory_gib=memory, bandwidth_mbps=bandwidth,
                                       rtt_ms=rtt, aggressiveness=mode)
            }
        }

    except Exception as e:
        return {
            "result": "FAILURE",
            "error": f"Preflight validation error: {str(e)}"
        }
