from hn_registry.utils.identity_utils import national_id_checksum


def make_national_id(first_twelve: str) -> str:
    """Complete 12 digits into a national ID with a valid check digit."""
    return f"{first_twelve}{national_id_checksum(first_twelve)}"


def make_passport(n: int) -> str:
    return f"AA{n:07d}"
