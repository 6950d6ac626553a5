# pping/engine/rules.py

SEQUENCE_SPACE = 1 << 16


def sweep_position(index: int, target_count: int) -> tuple[int, int]:
    """
    Map the global sweep index to (target_id, sequence).
    Targets are visited round-robin; the sequence advances once per full sweep
    and wraps with the 16-bit ICMP field.
    """
    if target_count <= 0:
        raise ValueError("sweep needs at least one target")
    return index % target_count, (index // target_count) % SEQUENCE_SPACE


def in_range(target_id: int, target_count: int) -> bool:
    return 0 <= target_id < target_count


def format_ms(seconds: float, decimals: int) -> str:
    return f"{seconds * 1000.0:.{decimals}f}"
