"""Small helpers shared across the client."""


def strip_0x_prefix(value: str) -> str:
    return value[2:] if value.startswith("0x") else value
