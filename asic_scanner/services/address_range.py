"""Address range parsing and expansion."""
import ipaddress
from typing import Iterable, Iterator, List, Tuple

from asic_scanner.models.device import AddressRange
from asic_scanner.models.errors import InvalidRange


def _parse_address(value: str, label: str) -> ipaddress.IPv4Address:
    try:
        return ipaddress.IPv4Address(str(value).strip())
    except ValueError:
        raise InvalidRange(f"Invalid {label} IP address: {value!r}") from None


def parse_range(start: str, end: str) -> AddressRange:
    """
    Validate a start/end pair.

    Raises:
        InvalidRange: either endpoint is not an IPv4 address, or end < start.
    """
    first = _parse_address(start, "start")
    last = _parse_address(end, "end")
    if last < first:
        raise InvalidRange("Start IP must be less than or equal to end IP")
    return AddressRange(first, last)


def parse_range_text(text: str) -> AddressRange:
    """
    Parse the saved-range shorthand.

    Accepts "10.0.81.1-254" (last octet only), "10.0.81.1-10.0.82.20" or a
    single address.
    """
    text = (text or "").strip()
    if not text:
        raise InvalidRange("Empty range")
    if "-" not in text:
        return parse_range(text, text)

    start, _, end = text.partition("-")
    start, end = start.strip(), end.strip()
    if "." not in end:
        prefix = start.rsplit(".", 1)[0]
        end = f"{prefix}.{end}"
    return parse_range(start, end)


def format_range(address_range: AddressRange) -> str:
    """Render a range in the shortest saved-range form."""
    start, end = str(address_range.start), str(address_range.end)
    if start.rsplit(".", 1)[0] == end.rsplit(".", 1)[0]:
        return f"{start}-{end.rsplit('.', 1)[1]}"
    return f"{start}-{end}"


def _merged_spans(ranges: Iterable[AddressRange]) -> List[Tuple[int, int]]:
    """Sorted, non-overlapping (first, last) integer spans covering the ranges."""
    merged: List[Tuple[int, int]] = []
    for first, last in sorted((int(r.start), int(r.end)) for r in ranges):
        if merged and first <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], last))
        else:
            merged.append((first, last))
    return merged


def expand_ranges(ranges: Iterable[AddressRange]) -> Iterator[str]:
    """Yield every address of several ranges once, in ascending order."""
    for first, last in _merged_spans(ranges):
        for value in range(first, last + 1):
            yield str(ipaddress.IPv4Address(value))


def count_addresses(ranges: Iterable[AddressRange]) -> int:
    """Number of distinct addresses covered by the given ranges."""
    return sum(last - first + 1 for first, last in _merged_spans(ranges))
